import itertools
from datetime import datetime

import pytest

from csvdetox.errors import DetoxUserError
from csvdetox.models.table import ColumnMetadata, Table
from csvdetox.models.transforms import (
    TRANSFORM_REGISTRY,
    StepContext,
    Transform,
    aggregate,
)


def _tbl(rows, columns=None):
    names = columns or (list(rows[0].keys()) if rows else [])
    return Table([dict(r) for r in rows], [ColumnMetadata(n) for n in names])


def test_registry_has_the_full_catalog():
    assert set(TRANSFORM_REGISTRY) >= {
        "trim", "uppercase", "lowercase", "deduplicate", "filter", "rename_column", "remove_column",
        "cast_column", "split_column", "merge_columns", "pivot", "unpivot", "fill_down", "fill_across", "sort",
    }


def test_unknown_op():
    with pytest.raises(DetoxUserError) as ex:
        Transform("explode", {}).apply(_tbl([{"a": 1}]))
    assert getattr(ex.value, "code", None) == "E_OP_NOT_IMPL"


def test_input_table_is_not_mutated():
    t = _tbl([{"a": " x "}])
    Transform("trim", {"columns": ["a"]}).apply(t)
    assert t.rows == [{"a": " x "}]


# ---------- trim / case ----------

def test_trim_and_case_touch_only_strings():
    t = _tbl([{"a": "  Hi ", "b": 3}, {"a": None, "b": " k "}])
    out = Transform("trim", {"columns": ["a", "b"]}).apply(t)
    assert out.rows == [{"a": "Hi", "b": 3}, {"a": None, "b": "k"}]
    out = Transform("uppercase", {"columns": ["a"]}).apply(out)
    assert out.rows[0]["a"] == "HI"
    out = Transform("lowercase", {"columns": ["a"]}).apply(out)
    assert out.rows[0]["a"] == "hi"


def test_missing_column_error_code_names_the_op():
    with pytest.raises(DetoxUserError) as ex:
        Transform("trim", {"columns": ["nope"]}).apply(_tbl([{"a": 1}]))
    assert getattr(ex.value, "code", None) == "E_TRIM_MISSING_COL"


def test_params_validation():
    with pytest.raises(DetoxUserError) as ex:
        Transform("uppercase", {"columns": []}).apply(_tbl([{"a": 1}]))
    assert getattr(ex.value, "code", None) == "E_UPPERCASE_PARAMS"


# ---------- deduplicate ----------

def test_deduplicate_all_columns_keeps_first_and_order():
    t = _tbl([{"a": 1, "b": "x"}, {"a": 2, "b": "y"}, {"a": 1, "b": "x"}, {"a": 3, "b": "z"}])
    out = Transform("deduplicate", {}).apply(t)
    assert [r["a"] for r in out.rows] == [1, 2, 3]


def test_deduplicate_subset():
    t = _tbl([{"a": 1, "b": "x"}, {"a": 1, "b": "y"}, {"a": 2, "b": "y"}])
    out = Transform("deduplicate", {"columns": ["a"]}).apply(t)
    assert out.rows == [{"a": 1, "b": "x"}, {"a": 2, "b": "y"}]


def test_deduplicate_does_not_conflate_types():
    t = _tbl([{"a": 1}, {"a": True}, {"a": "1"}])
    assert Transform("deduplicate", {}).apply(t).row_count == 3


# ---------- filter ----------

_PEOPLE = [
    {"name": "Ann", "age": "30"},
    {"name": "Ben", "age": "9"},
    {"name": "Cy", "age": None},
    {"name": "Dee", "age": "100"},
]


def _names(table):
    return [r["name"] for r in table.rows]


def test_filter_numeric_comparison_when_both_numeric():
    out = Transform("filter", {"column": "age", "operator": "greater_than", "value": 20}).apply(_tbl(_PEOPLE))
    # "9" < 20 numerically even though "9" > "20" as text
    assert _names(out) == ["Ann", "Dee"]


def test_filter_less_than_and_equals():
    t = _tbl(_PEOPLE)
    assert _names(Transform("filter", {"column": "age", "operator": "less_than", "value": "30"}).apply(t)) == ["Ben"]
    assert _names(Transform("filter", {"column": "age", "operator": "equals", "value": 30.0}).apply(t)) == ["Ann"]
    assert _names(Transform("filter", {"column": "age", "operator": "not_equals", "value": 30}).apply(t)) == [
        "Ben", "Cy", "Dee"
    ]


def test_filter_contains_and_nulls():
    t = _tbl(_PEOPLE)
    out = Transform("filter", {"column": "age", "operator": "contains", "value": "0"}).apply(t)
    assert _names(out) == ["Ann", "Dee"]
    out = Transform("filter", {"column": "age", "operator": "not_contains", "value": "0"}).apply(t)
    assert _names(out) == ["Ben", "Cy"]


def test_filter_string_comparison():
    out = Transform("filter", {"column": "name", "operator": "greater_than", "value": "B"}).apply(_tbl(_PEOPLE))
    assert _names(out) == ["Ben", "Cy", "Dee"]


def test_filter_bad_operator():
    with pytest.raises(DetoxUserError) as ex:
        Transform("filter", {"column": "age", "operator": "between", "value": 1}).apply(_tbl(_PEOPLE))
    assert getattr(ex.value, "code", None) == "E_FILTER_PARAMS"


def test_filter_missing_column():
    with pytest.raises(DetoxUserError) as ex:
        Transform("filter", {"column": "agee", "operator": "equals", "value": 1}).apply(_tbl(_PEOPLE))
    assert getattr(ex.value, "code", None) == "E_FILTER_MISSING_COL"
    assert "age" in (ex.value.hint or "")


# ---------- rename / remove ----------

def test_rename_keeps_position_and_metadata():
    t = Table([{"a": 1, "b": 2}], [ColumnMetadata("a", "number", 1, 0, (1,)), ColumnMetadata("b")])
    out = Transform("rename_column", {"old_name": "a", "new_name": "z"}).apply(t)
    assert out.column_names == ["z", "b"]
    assert out.rows == [{"z": 1, "b": 2}]
    assert out.column("z").type == "number"


def test_rename_accepts_camel_case_config():
    out = Transform("rename_column", {"oldName": "a", "newName": "z"}).apply(_tbl([{"a": 1}]))
    assert out.column_names == ["z"]


def test_rename_missing_and_existing():
    t = _tbl([{"a": 1, "b": 2}])
    with pytest.raises(DetoxUserError) as ex:
        Transform("rename_column", {"old_name": "c", "new_name": "d"}).apply(t)
    assert getattr(ex.value, "code", None) == "E_RENAME_COLUMN_MISSING_COL"
    with pytest.raises(DetoxUserError) as ex:
        Transform("rename_column", {"old_name": "a", "new_name": "b"}).apply(t)
    assert getattr(ex.value, "code", None) == "E_RENAME_COLUMN_EXISTS"


def test_remove_columns():
    out = Transform("remove_column", {"columns": ["b"]}).apply(_tbl([{"a": 1, "b": 2, "c": 3}]))
    assert out.column_names == ["a", "c"]
    assert out.rows == [{"a": 1, "c": 3}]
    with pytest.raises(DetoxUserError) as ex:
        Transform("remove_column", {"columns": ["zz"]}).apply(out)
    assert getattr(ex.value, "code", None) == "E_REMOVE_COLUMN_MISSING_COL"


# ---------- cast ----------

_AGES = [{"age": "1"}, {"age": "x"}, {"age": None}, {"age": "4"}]


def test_cast_null_mode_keeps_row_count():
    ctx = StepContext()
    t = _tbl(_AGES)
    out = Transform("cast_column", {"column": "age", "target_type": "number", "on_error": "null"}).apply(t, context=ctx)
    assert out.row_count == t.row_count
    assert [r["age"] for r in out.rows] == [1, None, None, 4]
    assert ctx.stats == {"cast_errors": 1, "skipped_rows": 0}
    assert any("1 error(s)" in w for w in out.warnings)


def test_cast_skip_mode_only_removes_failing_rows():
    ctx = StepContext()
    t = _tbl(_AGES)
    out = Transform("cast_column", {"column": "age", "targetType": "number", "onError": "skip"}).apply(t, context=ctx)
    assert out.row_count <= t.row_count
    assert [r["age"] for r in out.rows] == [1, None, 4]
    assert ctx.stats["skipped_rows"] == 1


def test_cast_fail_mode_rejects_step():
    with pytest.raises(DetoxUserError) as ex:
        Transform("cast_column", {"column": "age", "target_type": "number"}).apply(_tbl(_AGES))
    assert getattr(ex.value, "code", None) == "E_CAST_FAILED"
    assert "row 2" in ex.value.message


def test_cast_clean_column_has_no_warning():
    out = Transform("cast_column", {"column": "age", "target_type": "number"}).apply(_tbl([{"age": "5"}]))
    assert out.rows == [{"age": 5}]
    assert out.warnings == []


def test_cast_date_with_format():
    t = _tbl([{"d": "15/01/2024"}])
    out = Transform("cast_column", {"column": "d", "target_type": "date", "format": "%d/%m/%Y"}).apply(t)
    assert out.rows[0]["d"] == datetime(2024, 1, 15)


def test_cast_bad_params():
    t = _tbl(_AGES)
    with pytest.raises(DetoxUserError) as ex:
        Transform("cast_column", {"column": "age", "target_type": "money"}).apply(t)
    assert getattr(ex.value, "code", None) == "E_CAST_TYPE_UNSUPPORTED"
    with pytest.raises(DetoxUserError) as ex:
        Transform("cast_column", {"column": "age", "target_type": "number", "on_error": "ignore"}).apply(t)
    assert getattr(ex.value, "code", None) == "E_CAST_ON_ERROR"


# ---------- split ----------

def test_split_by_delimiter_replaces_source_in_place():
    t = _tbl([{"id": 1, "name": "Ann Lee", "x": 0}, {"id": 2, "name": "Bo", "x": 0}])
    out = Transform(
        "split_column",
        {"column": "name", "method": "delimiter", "delimiter": " ", "new_columns": ["first", "last"]},
    ).apply(t)
    assert out.column_names == ["id", "first", "last", "x"]
    assert out.rows[0] == {"id": 1, "first": "Ann", "last": "Lee", "x": 0}
    assert out.rows[1] == {"id": 2, "first": "Bo", "last": None, "x": 0}


def test_split_keep_original_and_max_splits():
    t = _tbl([{"path": "a/b/c"}])
    out = Transform(
        "split_column",
        {
            "column": "path",
            "method": "delimiter",
            "delimiter": "/",
            "new_columns": ["head", "rest"],
            "max_splits": 1,
            "keep_original": True,
        },
    ).apply(t)
    assert out.column_names == ["path", "head", "rest"]
    assert out.rows[0] == {"path": "a/b/c", "head": "a", "rest": "b/c"}


def test_split_by_position():
    t = _tbl([{"phone": "555-1234"}])
    out = Transform(
        "split_column",
        {"column": "phone", "method": "position", "positions": [4, 0], "new_columns": ["area", "number"]},
    ).apply(t)
    assert out.rows[0] == {"area": "555-", "number": "1234"}


def test_split_by_regex_trims_parts():
    t = _tbl([{"d": "2024 - 01/15"}])
    out = Transform(
        "split_column",
        {"column": "d", "method": "regex", "pattern": "[-/]", "new_columns": ["y", "m", "day"]},
    ).apply(t)
    assert out.rows[0] == {"y": "2024", "m": "01", "day": "15"}


def test_split_null_source_gives_nulls():
    out = Transform(
        "split_column",
        {"column": "a", "method": "delimiter", "delimiter": ",", "new_columns": ["b", "c"]},
    ).apply(_tbl([{"a": None}]))
    assert out.rows == [{"b": None, "c": None}]


def test_split_rejects_existing_column_and_bad_regex():
    t = _tbl([{"a": "x y", "b": 1}])
    with pytest.raises(DetoxUserError) as ex:
        Transform(
            "split_column",
            {"column": "a", "method": "delimiter", "delimiter": " ", "new_columns": ["b", "c"]},
        ).apply(t)
    assert getattr(ex.value, "code", None) == "E_SPLIT_COLUMN_EXISTS"
    with pytest.raises(DetoxUserError) as ex:
        Transform(
            "split_column",
            {"column": "a", "method": "regex", "pattern": "(", "new_columns": ["c", "d"]},
        ).apply(t)
    assert getattr(ex.value, "code", None) == "E_SPLIT_COLUMN_PARAMS"


# ---------- merge ----------

def test_merge_columns_position_and_null_skipping():
    t = _tbl([
        {"id": 1, "first": "Ann", "mid": None, "last": "Lee"},
        {"id": 2, "first": "Bo", "mid": "J", "last": "Ray"},
    ])
    out = Transform(
        "merge_columns", {"columns": ["first", "mid", "last"], "separator": " ", "new_column": "full"}
    ).apply(t)
    assert out.column_names == ["id", "full"]
    assert [r["full"] for r in out.rows] == ["Ann Lee", "Bo J Ray"]


def test_merge_columns_keep_nulls_and_originals():
    t = _tbl([{"a": "x", "b": None, "c": 3}])
    out = Transform(
        "merge_columns",
        {"columns": ["a", "b", "c"], "separator": "-", "new_column": "abc", "skip_null": False, "keep_original": True},
    ).apply(t)
    assert out.column_names == ["abc", "a", "b", "c"]
    assert out.rows[0]["abc"] == "x--3"
    assert out.rows[0]["a"] == "x"


def test_merge_new_column_must_not_exist():
    with pytest.raises(DetoxUserError) as ex:
        Transform("merge_columns", {"columns": ["a"], "new_column": "b"}).apply(_tbl([{"a": 1, "b": 2}]))
    assert getattr(ex.value, "code", None) == "E_MERGE_COLUMNS_EXISTS"


# ---------- unpivot / pivot ----------

def test_unpivot_scenario():
    t = _tbl([{"Name": "Alice", "Jan": 100, "Feb": 200}])
    out = Transform(
        "unpivot",
        {
            "id_columns": ["Name"],
            "value_columns": ["Jan", "Feb"],
            "variable_column_name": "Month",
            "value_column_name": "Sales",
        },
    ).apply(t)
    assert out.column_names == ["Name", "Month", "Sales"]
    assert out.rows == [
        {"Name": "Alice", "Month": "Jan", "Sales": 100},
        {"Name": "Alice", "Month": "Feb", "Sales": 200},
    ]


def test_unpivot_rejects_overlap_and_name_conflicts():
    t = _tbl([{"Name": "A", "Jan": 1}])
    with pytest.raises(DetoxUserError) as ex:
        Transform("unpivot", {"id_columns": ["Name"], "value_columns": ["Name", "Jan"]}).apply(t)
    assert getattr(ex.value, "code", None) == "E_UNPIVOT_PARAMS"
    with pytest.raises(DetoxUserError) as ex:
        Transform(
            "unpivot", {"id_columns": ["Name"], "value_columns": ["Jan"], "variable_column_name": "Name"}
        ).apply(t)
    assert getattr(ex.value, "code", None) == "E_UNPIVOT_PARAMS"


def test_pivot_reverses_unpivot():
    long = _tbl([
        {"Name": "Alice", "Month": "Jan", "Sales": 100},
        {"Name": "Bob", "Month": "Feb", "Sales": 50},
        {"Name": "Alice", "Month": "Feb", "Sales": 200},
    ])
    out = Transform("pivot", {"index_columns": ["Name"], "column_source": "Month", "value_source": "Sales"}).apply(long)
    assert out.column_names == ["Name", "Feb", "Jan"]
    assert out.rows == [
        {"Name": "Alice", "Feb": 200, "Jan": 100},
        {"Name": "Bob", "Feb": 50, "Jan": None},
    ]


@pytest.mark.parametrize(
    "how, expected",
    [("first", "10"), ("last", "x"), ("sum", 30.0), ("mean", 15.0), ("count", 3)],
)
def test_pivot_aggregations(how, expected):
    t = _tbl([
        {"k": "a", "c": "v", "n": "10"},
        {"k": "a", "c": "v", "n": 20},
        {"k": "a", "c": "v", "n": "x"},
    ])
    out = Transform(
        "pivot", {"index_columns": ["k"], "column_source": "c", "value_source": "n", "aggregation": how}
    ).apply(t)
    assert out.rows == [{"k": "a", "v": expected}]


def test_pivot_null_header_and_collision():
    t = _tbl([{"k": "a", "c": None, "n": 1}])
    out = Transform("pivot", {"index_columns": ["k"], "column_source": "c", "value_source": "n"}).apply(t)
    assert out.column_names == ["k", "null"]
    clash = _tbl([{"k": "a", "c": "k", "n": 1}])
    with pytest.raises(DetoxUserError) as ex:
        Transform("pivot", {"index_columns": ["k"], "column_source": "c", "value_source": "n"}).apply(clash)
    assert getattr(ex.value, "code", None) == "E_PIVOT_COLLISION"


def test_pivot_param_overlaps():
    t = _tbl([{"k": "a", "c": "v", "n": 1}])
    with pytest.raises(DetoxUserError) as ex:
        Transform("pivot", {"index_columns": ["k"], "column_source": "k", "value_source": "n"}).apply(t)
    assert getattr(ex.value, "code", None) == "E_PIVOT_PARAMS"


def test_aggregate_without_numbers_is_null():
    assert aggregate(["a", None], "sum") is None
    assert aggregate([], "count") is None


# ---------- fill ----------

def test_fill_down():
    t = _tbl([{"r": "N"}, {"r": None}, {"r": "  "}, {"r": "S"}, {"r": ""}])
    out = Transform("fill_down", {"columns": ["r"]}).apply(t)
    assert [r["r"] for r in out.rows] == ["N", "N", "  ", "S", "S"]
    out = Transform("fill_down", {"columns": ["r"], "treat_whitespace_as_empty": True}).apply(t)
    assert [r["r"] for r in out.rows] == ["N", "N", "N", "S", "S"]


def test_fill_down_leading_blank_stays_null():
    out = Transform("fill_down", {"columns": ["r"]}).apply(_tbl([{"r": None}, {"r": "a"}]))
    assert [r["r"] for r in out.rows] == [None, "a"]


def test_fill_across_follows_selected_order():
    t = _tbl([{"q1": 5, "q2": None, "q3": " ", "q4": 8}], ["q1", "q2", "q3", "q4"])
    out = Transform("fill_across", {"columns": ["q1", "q2", "q3", "q4"], "treatWhitespaceAsEmpty": True}).apply(t)
    assert out.rows == [{"q1": 5, "q2": 5, "q3": 5, "q4": 8}]
    out = Transform("fill_across", {"columns": ["q4", "q3", "q2"]}).apply(t)
    assert out.rows == [{"q1": 5, "q2": " ", "q3": " ", "q4": 8}]


# ---------- sort ----------

def test_sort_is_stable_multi_key():
    t = _tbl([
        {"Dept": "B", "Salary": 10, "id": 1},
        {"Dept": "A", "Salary": 5, "id": 2},
        {"Dept": "A", "Salary": 7, "id": 3},
        {"Dept": "A", "Salary": 5, "id": 4},
        {"Dept": "B", "Salary": 10, "id": 5},
    ])
    out = Transform(
        "sort", {"columns": [{"col": "Dept", "dir": "asc"}, {"col": "Salary", "dir": "desc"}]}
    ).apply(t)
    assert [r["id"] for r in out.rows] == [3, 2, 4, 1, 5]


def test_sort_null_placement_ignores_direction():
    t = _tbl([{"v": 2}, {"v": None}, {"v": 1}])
    out = Transform("sort", {"columns": [{"column": "v", "direction": "desc"}]}).apply(t)
    assert [r["v"] for r in out.rows] == [2, 1, None]
    out = Transform("sort", {"columns": [{"column": "v"}], "nulls_position": "first"}).apply(t)
    assert [r["v"] for r in out.rows] == [None, 1, 2]


def test_sort_compares_numbers_numerically_and_text_case_aware():
    t = _tbl([{"v": 10}, {"v": 9}, {"v": 100}])
    assert [r["v"] for r in Transform("sort", {"columns": ["v"]}).apply(t).rows] == [9, 10, 100]
    t = _tbl([{"v": "b"}, {"v": "B"}, {"v": "a"}])
    assert [r["v"] for r in Transform("sort", {"columns": ["v"]}).apply(t).rows] == ["a", "B", "b"]


@pytest.mark.parametrize("order", list(itertools.permutations(["2", "10", "1a", True, datetime(2024, 1, 1)])))
def test_sort_mixed_values_has_one_answer(order):
    t = _tbl([{"v": v} for v in order])
    out = Transform("sort", {"columns": ["v"]}).apply(t)
    assert [r["v"] for r in out.rows] == ["2", "10", datetime(2024, 1, 1), True, "1a"]


def test_sort_bad_direction():
    with pytest.raises(DetoxUserError) as ex:
        Transform("sort", {"columns": [{"column": "v", "direction": "up"}]}).apply(_tbl([{"v": 1}]))
    assert getattr(ex.value, "code", None) == "E_SORT_PARAMS"


# ---------- IR ----------

def test_transform_ir_shape():
    t = Transform("trim", {"columns": ["a"]}, id="s1")
    assert t.to_ir() == {"id": "s1", "type": "trim", "config": {"columns": ["a"]}}
    assert Transform.from_ir(t.to_ir()) == t
    assert Transform.from_ir({"op": "trim", "params": {"columns": ["a"]}}) == Transform("trim", {"columns": ["a"]})


def test_transform_ir_rejects_garbage():
    with pytest.raises(DetoxUserError) as ex:
        Transform.from_ir({"config": {}})
    assert getattr(ex.value, "code", None) == "E_IR_STEP"
