from minilang import run_cli


def write_program(tmp_path, src: str) -> str:
    path = tmp_path / "program.mini"
    path.write_text(src, encoding="utf-8")
    return str(path)


def test_runs_file(tmp_path, capsys):
    path = write_program(tmp_path, 'greeting = "hi"; print(greeting); print([1, 2]);')
    assert run_cli([path]) == 0
    assert capsys.readouterr().out == "hi\n[0:1,1:2]\n"


def test_source_mode(capsys):
    assert run_cli(["-source", "print(1 + 2);"]) == 0
    assert capsys.readouterr().out == "3\n"


def test_missing_argument(capsys):
    assert run_cli([]) == 1
    assert "missing filename argument" in capsys.readouterr().err


def test_unreadable_file(tmp_path, capsys):
    assert run_cli([str(tmp_path / "absent.mini")]) == 1
    assert "Failed to read" in capsys.readouterr().err


def test_lex_error(tmp_path, capsys):
    path = write_program(tmp_path, "x = 1 # 2;")
    assert run_cli([path]) == 1
    err = capsys.readouterr().err
    assert err.startswith("LexError:")
    assert "invalid token '#'" in err


def test_parse_error(tmp_path, capsys):
    path = write_program(tmp_path, "x = 1")
    assert run_cli([path]) == 1
    err = capsys.readouterr().err
    assert err.startswith("ParseError:")
    assert "expected ;" in err


def test_runtime_error_keeps_earlier_output(tmp_path, capsys):
    path = write_program(tmp_path, "print(1);\nprint(missing);\nprint(2);")
    assert run_cli([path, "--traceback-json"]) == 1
    captured = capsys.readouterr()
    assert captured.out == "1\n"
    assert "Traceback (most recent call last):" in captured.err
    assert "Undefined identifier 'missing'" in captured.err
    assert '"traceback"' in captured.err
