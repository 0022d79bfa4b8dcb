from sopskit.formats import (
    Format,
    format_for_path,
    format_for_path_or_string,
    format_from_string,
    is_env_file,
    is_ini_file,
    is_json_file,
    is_yaml_file,
)


def test_format_from_string():
    assert format_from_string("foobar") is Format.BINARY
    assert format_from_string("dotenv") is Format.DOTENV
    assert format_from_string("ini") is Format.INI
    assert format_from_string("yaml") is Format.YAML
    assert format_from_string("json") is Format.JSON


def test_format_for_path():
    assert format_for_path("/path/to/foobar") is Format.BINARY
    assert format_for_path("/path/to/foobar.env") is Format.DOTENV
    assert format_for_path("/path/to/foobar.ini") is Format.INI
    assert format_for_path("/path/to/foobar.json") is Format.JSON
    assert format_for_path("/path/to/foobar.yml") is Format.YAML
    assert format_for_path("/path/to/foobar.yaml") is Format.YAML


def test_format_for_path_or_string():
    assert format_for_path_or_string("/path/to/foobar", "") is Format.BINARY
    assert format_for_path_or_string("/path/to/foobar", "dotenv") is Format.DOTENV
    assert format_for_path_or_string("/path/to/foobar.env", "") is Format.DOTENV
    assert format_for_path_or_string("/path/to/foobar", "ini") is Format.INI
    assert format_for_path_or_string("/path/to/foobar.ini", "") is Format.INI
    assert format_for_path_or_string("/path/to/foobar", "json") is Format.JSON
    assert format_for_path_or_string("/path/to/foobar.json", "") is Format.JSON
    assert format_for_path_or_string("/path/to/foobar", "yaml") is Format.YAML
    assert format_for_path_or_string("/path/to/foobar.yml", "") is Format.YAML

    assert format_for_path_or_string("/path/to/foobar.yml", "ini") is Format.INI
    assert format_for_path_or_string("/path/to/foobar.yml", "binary") is Format.BINARY


def test_predicates():
    assert is_yaml_file("a.yml") and is_yaml_file("a.yaml")
    assert not is_yaml_file("a.json")
    assert is_json_file("a.json") and not is_json_file("a.jsonl")
    assert is_env_file("a.env") and not is_env_file("a.envrc")
    assert is_ini_file("a.ini") and not is_ini_file("a.in")