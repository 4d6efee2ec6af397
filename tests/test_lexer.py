import pytest

from lexer import Lexer, MiniLexError, decode_string, merge_compound


def token_types(src: str):
    return [tok.type for tok in Lexer(src, "<test>").tokenize()]


def test_compound_operators_merge_when_adjacent():
    assert token_types("x==1!=2") == ["IDENT", "EQL", "NUMBER", "NEQ", "NUMBER", "EOF"]
    assert token_types("a<=b>=c") == ["IDENT", "LEQ", "IDENT", "GEQ", "IDENT", "EOF"]
    assert token_types("a&&b||c") == ["IDENT", "LAND", "IDENT", "LOR", "IDENT", "EOF"]


def test_separated_characters_stay_single_tokens():
    assert token_types("a < = b") == ["IDENT", "LSS", "ASSIGN", "IDENT", "EOF"]
    assert token_types("! x") == ["NOT", "IDENT", "EOF"]
    assert token_types("x = 1") == ["IDENT", "ASSIGN", "NUMBER", "EOF"]


def test_triple_equals_merges_only_the_first_pair():
    assert token_types("a===b") == ["IDENT", "EQL", "ASSIGN", "IDENT", "EOF"]


def test_merge_pass_is_idempotent():
    lexer = Lexer("a<=b==c&&d||!e", "<test>")
    once = merge_compound(lexer._scan())
    assert merge_compound(once) == once
    assert [f.text for f in once] == ["a", "<=", "b", "==", "c", "&&", "d", "||", "!", "e"]


def test_lone_ampersand_is_invalid():
    with pytest.raises(MiniLexError) as info:
        Lexer("a & b", "<test>").tokenize()
    assert "invalid token '&'" in str(info.value)


def test_keywords_and_identifiers():
    assert token_types("if else func return while iffy") == ["IF", "ELSE", "FUNC", "RETURN", "WHILE", "IDENT", "EOF"]


def test_punctuation():
    assert token_types("( [ { , . ) ] } ; :") == [
        "LPAREN", "LBRACKET", "LBRACE", "COMMA", "PERIOD",
        "RPAREN", "RBRACKET", "RBRACE", "SEMICOLON", "COLON", "EOF",
    ]


def test_comments_are_skipped():
    assert token_types("x // trailing\n/* block\ncomment */ y") == ["IDENT", "IDENT", "EOF"]


def test_string_token_keeps_source_text():
    tokens = Lexer('s = "hi\\n";', "<test>").tokenize()
    assert tokens[2].type == "STRING"
    assert tokens[2].value == '"hi\\n"'
    assert decode_string(tokens[2].value) == "hi\n"


def test_token_positions():
    tokens = Lexer("a\n  bb", "<test>").tokenize()
    assert (tokens[1].line, tokens[1].column, tokens[1].offset) == (2, 3, 4)


def test_non_integer_numbers_are_invalid():
    with pytest.raises(MiniLexError) as info:
        Lexer("x = 1.5;", "<test>").tokenize()
    assert "invalid token '1.5'" in str(info.value)
    assert "<test>:1:5" in str(info.value)


def test_number_followed_by_letters_is_one_invalid_token():
    with pytest.raises(MiniLexError) as info:
        Lexer("x = 0x1F;", "<test>").tokenize()
    assert info.value.errors == ["<test>:1:5: invalid token '0x1F'"]


def test_underscore_prefix_is_invalid():
    with pytest.raises(MiniLexError):
        Lexer("_x = 1;", "<test>").tokenize()


def test_errors_are_aggregated():
    with pytest.raises(MiniLexError) as info:
        Lexer("x = @ ;\ny = $;", "<test>").tokenize()
    assert len(info.value.errors) == 2
    assert "'@'" in info.value.errors[0]
    assert "<test>:2:5" in info.value.errors[1]


def test_scanner_errors_are_aggregated():
    with pytest.raises(MiniLexError) as info:
        Lexer('a = "bad \\q escape";\nb = "open', "<test>").tokenize()
    messages = info.value.errors
    assert any("invalid char escape" in m for m in messages)
    assert any("literal not terminated" in m for m in messages)


def test_unterminated_block_comment():
    with pytest.raises(MiniLexError) as info:
        Lexer("x /* never closed", "<test>").tokenize()
    assert "comment not terminated" in str(info.value)
