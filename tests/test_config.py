import pytest

from minios.config import (
    CpuConfig,
    load_properties,
    parse_list,
    parse_properties,
    save_properties,
)

CPU_PROPERTIES = {
    "RETARDO_INSTRUCCION": "1000",
    "IP_MEMORIA": "127.0.0.1",
    "PUERTO_MEMORIA": "8002",
    "PUERTO_ESCUCHA": "8001",
    "TAM_MAX_SEGMENTO": "128",
}


def test_parse_properties_skips_comments_and_blank_lines():
    text = "A=1\n# comment\n\nB=hello world\n"
    assert parse_properties(text) == {"A": "1", "B": "hello world"}


def test_parse_properties_splits_on_first_equals():
    assert parse_properties("URL=a=b\n") == {"URL": "a=b"}


def test_parse_properties_ignores_lines_without_equals():
    assert parse_properties("garbage\nK=V\n") == {"K": "V"}


def test_save_and_load_round_trip(tmp_path):
    path = tmp_path / "props.dat"
    data = {"NOMBRE_ARCHIVO": "notas", "TAMANIO_ARCHIVO": "0"}
    save_properties(data, path)
    assert load_properties(path) == data


def test_save_accepts_non_string_values(tmp_path):
    path = tmp_path / "props.dat"
    save_properties({"PUNTERO_DIRECTO": -1}, path)
    assert load_properties(path) == {"PUNTERO_DIRECTO": "-1"}


def test_load_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_properties(tmp_path / "absent.config")


def test_parse_list_items():
    assert parse_list("[DISCO, RED]") == ["DISCO", "RED"]


def test_parse_list_empty():
    assert parse_list("[]") == []


def test_parse_list_requires_brackets():
    with pytest.raises(ValueError):
        parse_list("DISCO")


def test_cpu_config_from_properties():
    config = CpuConfig.from_properties(CPU_PROPERTIES)
    assert config.instruction_delay == 1000
    assert config.memory_ip == "127.0.0.1"
    assert config.memory_port == 8002
    assert config.listen_port == 8001
    assert config.max_segment_size == 128


def test_cpu_config_missing_key():
    props = dict(CPU_PROPERTIES)
    del props["TAM_MAX_SEGMENTO"]
    with pytest.raises(KeyError):
        CpuConfig.from_properties(props)


def test_cpu_config_bad_integer():
    props = dict(CPU_PROPERTIES, PUERTO_MEMORIA="abc")
    with pytest.raises(ValueError):
        CpuConfig.from_properties(props)