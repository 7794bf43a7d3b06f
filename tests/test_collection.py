import sys
from pathlib import Path

from common import write_module

from hypocheck.collection import collect_properties


def collect(tmp_path, code, name="props.py"):
    path = write_module(tmp_path / name, code)
    return collect_properties([str(path)])


def test_collects_forall_and_property_objects(tmp_path):
    code = """
    @forall(x=integers(0, 10))
    def test_small(x):
        assert x <= 10

    def check_big(x):
        return x < 5

    big = Property(check_big, x=integers(0, 10))
    """
    result = collect(tmp_path, code, "collects_both.py")
    assert {p.name for p in result.properties} == {"test_small", "check_big"}


def test_plain_test_functions_are_not_collected(tmp_path):
    code = """
    def test_plain():
        pass

    def helper():
        pass
    """
    result = collect(tmp_path, code, "plain_tests.py")
    assert result.properties == []
    assert result.not_collected == {
        "plain_tests.test_plain": {"status_reason": "not_a_property"}
    }


def test_import_errors_are_reported(tmp_path):
    result = collect(tmp_path, "raise RuntimeError('broken module')", "broken.py")
    assert result.properties == []
    [(name, info)] = result.not_collected.items()
    assert name.endswith("broken.py")
    assert info["status_reason"] == "import_error"
    assert "broken module" in info["traceback"]


def test_imported_properties_are_not_collected_twice(tmp_path, monkeypatch):
    monkeypatch.syspath_prepend(str(tmp_path))
    write_module(
        tmp_path / "defines_prop.py",
        """
        @forall(x=integers(0, 1))
        def test_defined_here(x):
            pass
        """,
    )
    result = collect(
        tmp_path, "from defines_prop import test_defined_here", "reexports.py"
    )
    assert result.properties == []


def test_collects_by_module_name(tmp_path, monkeypatch):
    monkeypatch.syspath_prepend(str(tmp_path))
    write_module(
        tmp_path / "by_module_name.py",
        """
        @forall(x=integers(0, 1))
        def test_by_name(x):
            pass
        """,
    )
    result = collect_properties(["by_module_name"])
    assert [p.name for p in result.properties] == ["test_by_name"]


def test_files_with_the_same_stem_are_kept_apart(tmp_path):
    paths = []
    for directory in ("first", "second"):
        (tmp_path / directory).mkdir()
        paths.append(
            write_module(
                tmp_path / directory / "same_stem.py",
                f"""
                @forall(x=integers(0, 1))
                def test_{directory}(x):
                    pass
                """,
            )
        )
    result = collect_properties([str(p) for p in paths])
    assert [p.name for p in result.properties] == ["test_first", "test_second"]
    modules = [sys.modules[p.fn.__module__] for p in result.properties]
    assert modules[0] is not modules[1]
    assert [Path(m.__file__).resolve() for m in modules] == [
        p.resolve() for p in paths
    ]
