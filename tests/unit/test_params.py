"""Unit tests for parameter marker normalization."""

from __future__ import annotations

from resilient_db.core.params import bind_key, normalize_params


class TestNormalizeParams:
    def test_pyformat_conversion(self) -> None:
        sql = "SELECT * FROM t_users WHERE id = @user_id"
        expected = "SELECT * FROM t_users WHERE id = %(user_id)s"
        assert normalize_params(sql, "pyformat", ("user_id",)) == (expected, ("user_id",))

    def test_qmark_conversion_keeps_marker_order(self) -> None:
        sql = "SELECT * FROM t WHERE a = @b AND c = @a"
        converted, order = normalize_params(sql, "qmark", ("@a", "@b"))
        assert converted == "SELECT * FROM t WHERE a = ? AND c = ?"
        assert order == ("@b", "@a")

    def test_repeated_marker_listed_per_occurrence(self) -> None:
        sql = "SELECT * FROM t WHERE a = @val OR b = @val"
        converted, order = normalize_params(sql, "qmark", ("val",))
        assert converted == "SELECT * FROM t WHERE a = ? OR b = ?"
        assert order == ("val", "val")

    def test_parameter_name_match_is_case_insensitive(self) -> None:
        sql = "SELECT * FROM t WHERE id = @JobID"
        converted, order = normalize_params(sql, "qmark", ("@jobid",))
        assert converted == "SELECT * FROM t WHERE id = ?"
        assert order == ("@jobid",)

    def test_unknown_markers_are_left_alone(self) -> None:
        sql = "DECLARE @local int; SELECT @local, @@ROWCOUNT WHERE id = @id"
        converted, _ = normalize_params(sql, "qmark", ("id",))
        assert converted == "DECLARE @local int; SELECT @local, @@ROWCOUNT WHERE id = ?"

    def test_typecast_exclusion(self) -> None:
        sql = "SELECT value::integer FROM t WHERE id = @id::int"
        expected = "SELECT value::integer FROM t WHERE id = %(id)s::int"
        assert normalize_params(sql, "pyformat", ("id",))[0] == expected

    def test_string_literal_exclusion(self) -> None:
        sql = "SELECT * FROM t WHERE col = '@id' AND id = @id"
        expected = "SELECT * FROM t WHERE col = '@id' AND id = %(id)s"
        assert normalize_params(sql, "pyformat", ("id",))[0] == expected

    def test_quoted_identifier_exclusion(self) -> None:
        sql = 'SELECT "@id" FROM t WHERE id = @id'
        converted, _ = normalize_params(sql, "qmark", ("id",))
        assert converted == 'SELECT "@id" FROM t WHERE id = ?'

    def test_email_like_text_is_not_a_marker(self) -> None:
        sql = "SELECT user@id FROM t WHERE id = @id"
        converted, _ = normalize_params(sql, "qmark", ("id",))
        assert converted == "SELECT user@id FROM t WHERE id = ?"

    def test_pyformat_escapes_percent_signs(self) -> None:
        sql = "SELECT * FROM t WHERE name LIKE 'abc%' AND id = @id AND pct > 5 % 2"
        expected = "SELECT * FROM t WHERE name LIKE 'abc%%' AND id = %(id)s AND pct > 5 %% 2"
        assert normalize_params(sql, "pyformat", ("id",))[0] == expected

    def test_qmark_leaves_percent_signs(self) -> None:
        sql = "SELECT * FROM t WHERE name LIKE 'abc%' AND id = @id"
        converted, _ = normalize_params(sql, "qmark", ("id",))
        assert converted == "SELECT * FROM t WHERE name LIKE 'abc%' AND id = ?"

    def test_no_params(self) -> None:
        sql = "SELECT 100 % 7"
        assert normalize_params(sql, "pyformat", ()) == (sql, ())

    def test_cache_returns_same_result(self) -> None:
        sql = "SELECT * FROM t WHERE id = @id"
        assert normalize_params(sql, "pyformat", ("id",)) == normalize_params(
            sql, "pyformat", ("id",)
        )


class TestBindKey:
    def test_strips_marker_prefix(self) -> None:
        assert bind_key("@job") == "job"

    def test_keeps_plain_names(self) -> None:
        assert bind_key("_job") == "_job"
