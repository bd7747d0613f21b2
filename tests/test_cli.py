from pathlib import Path

import polars as pl
from typer.testing import CliRunner

from conftest import stamp
from placereplay.cli import app

runner = CliRunner()


def config_for(tmp_path: Path, log: Path, extra: str = "") -> Path:
    path = tmp_path / "config.toml"
    path.write_text(
        f'csv_location = "{log.as_posix()}"\n'
        f'final_image_time = "{stamp(8)}"\n'
        'log_level = "WARNING"\n'
        + extra
    )
    return path


AREA = "[[search_areas]]\nname = \"corner\"\nleft = 0\ntop = 0\nright = 1\nbottom = 1\n"


def test_search_single_candidate_prints_report(tmp_path: Path, write_log, sample_rows) -> None:
    cfg = config_for(tmp_path, write_log(sample_rows), AREA)
    result = runner.invoke(app, ["search", str(cfg), "--show-tiles"])
    assert result.exit_code == 0, result.output
    # bob also painted outside the corner, so only alice remains
    assert "0: alice [3 placements]" in result.output
    assert "Survived to final image: 2" in result.output
    # carol overwrote (1,0) after the final image
    assert "Survived to actual end: 1" in result.output
    assert "Remaining White tile: 1,1" in result.output
    assert "Execution Time (ms)" in result.output


def test_search_prompts_when_several_candidates(tmp_path: Path, write_log, sample_rows) -> None:
    cfg = config_for(tmp_path, write_log(sample_rows), "no_edits_outside = false\n" + AREA)
    out_csv = tmp_path / "candidates.csv"
    result = runner.invoke(app, ["search", str(cfg), "--output-csv", str(out_csv)], input="9\n1\n")
    assert result.exit_code == 0, result.output
    assert "Found users:" in result.output
    assert "Index out of bounds" in result.output

    frame = pl.read_csv(out_csv)
    assert frame["user_id"].to_list() == ["alice", "bob", "carol"]
    # second candidate was chosen at the prompt
    assert "User: bob" in result.output


def test_search_without_matches(tmp_path: Path, write_log, sample_rows) -> None:
    area = AREA.replace("left = 0", "left = 900").replace("right = 1", "right = 901")
    cfg = config_for(tmp_path, write_log(sample_rows), area)
    result = runner.invoke(app, ["search", str(cfg)])
    assert result.exit_code == 0
    assert "Did not find any users." in result.output


def test_search_with_configured_user(tmp_path: Path, write_log, sample_rows) -> None:
    cfg = config_for(tmp_path, write_log(sample_rows), 'user_id = "carol"\n')
    result = runner.invoke(app, ["search", str(cfg)])
    assert result.exit_code == 0, result.output
    assert "User: carol" in result.output
    assert "Total placements: 2" in result.output


def test_report_unknown_user(tmp_path: Path, write_log, sample_rows) -> None:
    cfg = config_for(tmp_path, write_log(sample_rows))
    result = runner.invoke(app, ["report", str(cfg), "--user", "nobody"])
    assert result.exit_code == 0
    assert "No data for user: nobody" in result.output


def test_invalid_bounds_fail_before_reading_the_log(tmp_path: Path) -> None:
    area = AREA.replace("right = 1", "right = -1")
    cfg = config_for(tmp_path, tmp_path / "missing.csv", area)
    result = runner.invoke(app, ["search", str(cfg)])
    assert result.exit_code == 1
    assert "invalid bounds" in result.output


def test_search_needs_areas_or_user(tmp_path: Path, write_log, sample_rows) -> None:
    cfg = config_for(tmp_path, write_log(sample_rows))
    result = runner.invoke(app, ["search", str(cfg)])
    assert result.exit_code == 1


def test_compact_then_search_the_parquet(tmp_path: Path, write_log, sample_rows) -> None:
    out = tmp_path / "events.parquet"
    result = runner.invoke(app, ["compact", str(write_log(sample_rows)), str(out)])
    assert result.exit_code == 0, result.output
    assert f"rows={len(sample_rows)}" in result.output

    cfg = config_for(tmp_path, out, AREA)
    result = runner.invoke(app, ["search", str(cfg)])
    assert result.exit_code == 0, result.output
    assert "0: alice [3 placements]" in result.output


def test_compact_rejects_unknown_schema(tmp_path: Path, write_log, sample_rows) -> None:
    result = runner.invoke(app, ["compact", str(write_log(sample_rows)), str(tmp_path / "x.parquet"), "--schema", "1999"])
    assert result.exit_code != 0


def test_compact_malformed_row_exits_with_line_number(tmp_path: Path, write_log, sample_rows) -> None:
    sample_rows.insert(1, [stamp(1), "mallory", "#FF4500", "a,b"])
    result = runner.invoke(app, ["compact", str(write_log(sample_rows)), str(tmp_path / "x.parquet")])
    assert result.exit_code == 1
    assert "malformed record on line 3" in result.output
