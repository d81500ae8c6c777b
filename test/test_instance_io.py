import pytest

from mkp_instance import Instance, InvalidInstanceError
from Utils.instance_io import instance_to_string, parse_instance, read_instance, write_instance


def test_parse_skips_blank_lines_and_accepts_any_whitespace():
    text = "2\n\n3\n10\n12\n\n5 10\n4\t40\n6   30\n"
    instance = parse_instance(text, name='t')
    assert instance.num_knapsacks == 2
    assert [k.capacity for k in instance.knapsacks] == [10, 12]
    assert [(i.weight, i.profit) for i in instance.items] == [(5, 10), (4, 40), (6, 30)]


def test_write_then_read_reproduces_numbers(tmp_path, small_instance):
    path = tmp_path / "small.txt"
    write_instance(small_instance, str(path))
    loaded = read_instance(str(path))
    assert loaded == small_instance
    assert loaded.name == 'small'


def test_instance_to_string_uses_tabs(example_instance):
    lines = instance_to_string(example_instance).splitlines()
    assert lines[:3] == ['1', '3', '10']
    assert lines[3] == '5\t10'


def test_fractional_values_survive_round_trip():
    instance = Instance.from_lists([10.5], [2.25], [3.5])
    assert parse_instance(instance_to_string(instance)) == instance


@pytest.mark.parametrize("text", [
    "",
    "1\n",
    "1\n2\n10\n5 5\n",
    "x\n1\n10\n5 5\n",
    "1\n1\n-10\n5 5\n",
    "1\n1\n10\n5\n",
    "1\n1\n10\n0 5\n",
    "0\n1\n10\n5 5\n",
])
def test_malformed_text_raises(text):
    with pytest.raises(InvalidInstanceError):
        parse_instance(text)


def test_missing_file_raises(tmp_path):
    with pytest.raises(InvalidInstanceError):
        read_instance(str(tmp_path / "missing.txt"))
