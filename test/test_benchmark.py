import pytest

from lp_solvers import HighsSolver
from Utils.benchmark import RESULT_COLUMNS, list_instance_files, run_benchmark, summarize
from Utils.instance_io import write_instance


def test_benchmark_runs_directory(tmp_path, example_instance, small_instance):
    write_instance(example_instance, str(tmp_path / "a_example.txt"))
    write_instance(small_instance, str(tmp_path / "b_small.txt"))
    (tmp_path / "c_broken.txt").write_text("1\n2\n")

    paths = list_instance_files(str(tmp_path))
    output = tmp_path / "out" / "results.csv"
    df = run_benchmark(paths, HighsSolver, output_csv=str(output))

    assert list(df.columns) == RESULT_COLUMNS
    assert list(df['instance']) == ['a_example', 'b_small', 'c_broken']
    assert list(df['status']) == ['optimal', 'optimal', 'error']
    assert df.loc[0, 'objective'] == pytest.approx(70)
    assert output.exists()

    summary = summarize(df)
    assert summary['instances'] == 3
    assert summary['optimal'] == 2
    assert summary['errors'] == 1


def test_missing_directory(tmp_path):
    with pytest.raises(FileNotFoundError):
        list_instance_files(str(tmp_path / "nope"))
