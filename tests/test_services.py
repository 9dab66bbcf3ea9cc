from __future__ import annotations

import json

import pytest

from bikefit.models import (
    FitReport,
    InvalidPositionInputError,
    LegacyFitReport,
    PayloadFormatError,
)
from bikefit.services import (
    BATCH_COLUMNS,
    BatchRow,
    analyze_request,
    analyze_request_file,
    parse_photo,
    render_report_text,
    reports_to_dataframe,
)


def _analysis(knee: float, torso: float = 44.0, elbow: float = 156.0) -> dict:
    return {"kneeAngle": knee, "torsoAngle": torso, "elbowAngle": elbow, "reachDistance": 21.0, "saddleHeight": 39.0}


def _photos_payload(six_knee: float = 28.0) -> dict:
    return {
        "photos": [
            {"position": "6-oclock", "analysis": _analysis(six_knee)},
            {"position": "three-oclock", "analysis": _analysis(80.0)},
        ]
    }


def test_parse_photo_reads_landmarks_and_dimensions(make_landmarks) -> None:
    photo = parse_photo({"position": "3-oclock", "landmarks": make_landmarks(), "imageWidth": 1280, "imageHeight": 720})
    assert photo.pedal_position == "three-oclock"
    assert len(photo.landmarks) == 33
    assert photo.features is None
    assert photo.image_width_px == 1280.0


def test_parse_photo_reads_precomputed_angles() -> None:
    photo = parse_photo({"pedalPosition": "six-oclock", "analysis": _analysis(27.5)})
    assert photo.features.knee_angle == 27.5
    assert photo.features.saddle_height_proxy == 39.0
    assert photo.features.pedal_position == "six-oclock"


def test_parse_photo_rejects_bad_input() -> None:
    with pytest.raises(InvalidPositionInputError):
        parse_photo({"analysis": _analysis(28.0)})
    with pytest.raises(InvalidPositionInputError):
        parse_photo({"position": "noon", "analysis": _analysis(28.0)})
    with pytest.raises(PayloadFormatError):
        parse_photo({"position": "six-oclock", "analysis": {"kneeAngle": "high"}})
    with pytest.raises(PayloadFormatError):
        parse_photo({"position": "six-oclock", "analysis": _analysis(28.0), "imageWidth": -5})


def test_analyze_request_two_photo() -> None:
    report = analyze_request(_photos_payload())
    assert isinstance(report, FitReport)
    assert report.recommendations == ()
    # no landmarks on the three o'clock photo, so KOPS is neutral
    assert report.kops.is_optimal
    assert report.diagnostics[0].startswith("kops_fallback:")


def test_analyze_request_photo_count() -> None:
    payload = _photos_payload()
    payload["photos"] = payload["photos"][:1]
    with pytest.raises(InvalidPositionInputError, match="received 1"):
        analyze_request(payload)


def test_analyze_request_legacy_angles() -> None:
    report = analyze_request({"angles": _analysis(20.0, torso=45.0, elbow=155.0)})
    assert isinstance(report, LegacyFitReport)
    assert report.overall_score == 80
    assert not report.summary.endswith("(AI Analysis)")

    detected = analyze_request({"angles": _analysis(20.0, torso=45.0, elbow=155.0), "isRealAnalysis": True})
    assert detected.summary.endswith("(AI Analysis)")


def test_analyze_request_legacy_landmarks(make_landmarks) -> None:
    report = analyze_request({"landmarks": make_landmarks({28: (0.55, 0.78)})})
    assert isinstance(report, LegacyFitReport)
    assert report.summary.endswith("(AI Analysis)")


@pytest.mark.parametrize("payload", [{}, {"foo": 1}, [], "photos"])
def test_analyze_request_rejects_unknown_format(payload) -> None:
    with pytest.raises(PayloadFormatError):
        analyze_request(payload)


def test_render_report_text_two_photo() -> None:
    text = render_report_text(analyze_request(_photos_payload(six_knee=20.0)))
    assert "Overall score: 90/100" in text
    assert "six-oclock" in text and "three-oclock" in text
    assert "KOPS offset: +0.0 cm (optimal)" in text
    assert "[high] saddle_height: Raise saddle by 5-15mm" in text
    assert "kops_fallback" in text


def test_render_report_text_legacy() -> None:
    text = render_report_text(analyze_request({"angles": _analysis(30.0, torso=45.0, elbow=155.0)}))
    assert "Overall score: 100/100" in text
    assert "Recommendations: none" in text


def test_batch_rows_and_dataframe(tmp_path) -> None:
    good = tmp_path / "a.json"
    good.write_text(json.dumps(_photos_payload(six_knee=20.0)), encoding="utf-8")
    bad = tmp_path / "b.json"
    bad.write_text(json.dumps({"photos": []}), encoding="utf-8")
    broken = tmp_path / "c.json"
    broken.write_text("{not json", encoding="utf-8")

    rows = [analyze_request_file(path) for path in (broken, good, bad)]
    assert rows[1].report is not None
    assert rows[0].error is not None and rows[2].error is not None

    df = reports_to_dataframe(rows)
    assert list(df.columns) == list(BATCH_COLUMNS)
    assert list(df["source"]) == [str(good), str(bad), str(broken)]
    ok = df.iloc[0]
    assert ok["status"] == "ok"
    assert ok["mode"] == "two-photo"
    assert ok["overall_score"] == 90
    assert ok["tier"] == "excellent"
    assert ok["recommendations"] == "saddle_height"
    assert set(df["status"].iloc[1:]) == {"error"}


def test_reports_to_dataframe_empty() -> None:
    df = reports_to_dataframe([])
    assert df.empty
    assert list(df.columns) == list(BATCH_COLUMNS)


def test_batch_row_records_legacy_mode() -> None:
    report = analyze_request({"angles": _analysis(30.0, torso=45.0, elbow=155.0)})
    record = BatchRow(source="x.json", report=report).to_record()
    assert record["mode"] == "single-photo"
    assert record["kops_offset_cm"] is None


def test_parse_photo_rounds_precomputed_angles() -> None:
    photo = parse_photo({"position": "six-oclock", "analysis": _analysis(27.46, torso=44.04, elbow=155.25)})
    assert photo.features.knee_angle == pytest.approx(27.5)
    assert photo.features.torso_angle == pytest.approx(44.0)
    assert photo.features.elbow_angle == pytest.approx(155.3)


@pytest.mark.parametrize("width", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_image_width_is_rejected(width) -> None:
    raw = (
        '{"photos": ['
        '{"position": "six-oclock", "analysis": {"kneeAngle": 28, "torsoAngle": 44, "elbowAngle": 156}},'
        '{"position": "three-oclock", "imageWidth": ' + width + ','
        ' "analysis": {"kneeAngle": 80, "torsoAngle": 44, "elbowAngle": 156}}'
        "]}"
    )
    with pytest.raises(PayloadFormatError, match="imageWidth"):
        analyze_request(json.loads(raw))


def test_non_utf8_request_becomes_error_row(tmp_path) -> None:
    path = tmp_path / "latin1.json"
    path.write_bytes('{"angles": {"note": "café"}}'.encode("latin-1"))
    row = analyze_request_file(path)
    assert row.report is None
    assert "UTF-8" in row.error


def test_analysis_tag_conflicting_with_photo_tag_is_rejected() -> None:
    payload = _photos_payload()
    payload["photos"][0]["analysis"]["pedalPosition"] = "three-oclock"
    with pytest.raises(InvalidPositionInputError, match="tagged three-oclock"):
        analyze_request(payload)


def test_analysis_tag_matching_photo_tag_is_accepted() -> None:
    payload = _photos_payload()
    payload["photos"][0]["analysis"]["pedalPosition"] = "6-oclock"
    assert isinstance(analyze_request(payload), FitReport)
