from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

import pandas as pd

from .fitting.config import FitConfig
from .fitting.features import coerce_landmarks
from .fitting.report import analyze_photo_pair, analyze_single_photo
from .fitting.scoring import score_tier
from .models import (
    SIX_OCLOCK,
    FitAnalysisError,
    FitReport,
    InvalidPositionInputError,
    LegacyFitReport,
    PayloadFormatError,
    PhotoSubmission,
    PoseFeatureSet,
    normalize_pedal_position,
)

BATCH_COLUMNS = (
    "source",
    "mode",
    "status",
    "overall_score",
    "tier",
    "kops_offset_cm",
    "kops_optimal",
    "consistent",
    "recommendations",
    "diagnostics",
    "error",
)


def _optional_number(value: Any, *, field: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise PayloadFormatError(f"{field} must be a number; received {value!r}.")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise PayloadFormatError(f"{field} must be a number; received {value!r}.") from exc
    if not math.isfinite(number) or number <= 0:
        raise PayloadFormatError(f"{field} must be a finite, positive number; received {value!r}.")
    return number


def parse_photo(payload: Mapping[str, Any], *, default_position: str | None = None) -> PhotoSubmission:
    """
    Build a PhotoSubmission from a JSON object.

    Accepts `position`/`pedalPosition`, `landmarks`, `imageWidth`/`imageHeight`
    and an optional `analysis`/`angles` object with precomputed angles. The
    analysis object may itself carry `landmarks` and image dimensions.
    """
    if not isinstance(payload, Mapping):
        raise PayloadFormatError(f"Photo entries must be objects; received {type(payload).__name__}.")

    analysis = payload.get("analysis") or payload.get("angles")
    if analysis is not None and not isinstance(analysis, Mapping):
        raise PayloadFormatError("Photo 'analysis' must be an object of angles.")
    analysis = analysis or {}

    raw_position = payload.get("position") or payload.get("pedalPosition") or analysis.get("pedalPosition")
    if raw_position is None:
        if default_position is None:
            raise InvalidPositionInputError("Each photo needs a pedal position tag (six-oclock or three-oclock).")
        raw_position = default_position
    position = normalize_pedal_position(raw_position)

    raw_landmarks = payload.get("landmarks", analysis.get("landmarks"))
    landmarks = tuple(coerce_landmarks(raw_landmarks)) if raw_landmarks is not None else None

    features = None
    if analysis:
        # keep the analysis tag so a mismatch with the photo tag is caught downstream
        features = PoseFeatureSet.from_mapping(
            analysis, pedal_position=analysis.get("pedalPosition") or position
        )

    return PhotoSubmission(
        pedal_position=position,
        landmarks=landmarks,
        features=features,
        image_width_px=_optional_number(
            payload.get("imageWidth", analysis.get("imageWidth")), field="imageWidth"
        ),
        image_height_px=_optional_number(
            payload.get("imageHeight", analysis.get("imageHeight")), field="imageHeight"
        ),
    )


def analyze_request(payload: Any, config: FitConfig | None = None) -> FitReport | LegacyFitReport:
    """
    Dispatch a request payload to the two-photo or legacy single-photo path.

    - `{"photos": [...]}` -> FitReport (exactly two photos required)
    - `{"angles": {...}}` or `{"landmarks": [...]}` -> LegacyFitReport
    """
    if not isinstance(payload, Mapping):
        raise PayloadFormatError("Request payload must be a JSON object.")

    if "photos" in payload:
        photos_raw = payload["photos"]
        if not isinstance(photos_raw, Sequence) or isinstance(photos_raw, (str, bytes)):
            raise InvalidPositionInputError("'photos' must be a list of two photo objects.")
        if len(photos_raw) != 2:
            raise InvalidPositionInputError(
                f"Two photos are required (one six-oclock, one three-oclock); received {len(photos_raw)}."
            )
        photos = [parse_photo(item) for item in photos_raw]
        return analyze_photo_pair(photos, config)

    if "angles" in payload or "landmarks" in payload:
        photo = parse_photo(payload, default_position=SIX_OCLOCK)
        detected = payload.get("isRealAnalysis")
        return analyze_single_photo(
            photo,
            detected=bool(detected) if detected is not None else None,
            config=config,
        )

    raise PayloadFormatError("Invalid request format: expected 'photos', 'angles' or 'landmarks'.")


def load_request(path: Path | str) -> Any:
    source = Path(path)
    try:
        return json.loads(source.read_text(encoding="utf-8"))
    except UnicodeDecodeError as exc:
        raise PayloadFormatError(f"{source}: not UTF-8 encoded ({exc.reason}).") from exc
    except json.JSONDecodeError as exc:
        raise PayloadFormatError(f"{source}: invalid JSON ({exc.msg} at line {exc.lineno}).") from exc


def _format_angle(value: float) -> str:
    return f"{value:.1f}°"


def render_report_text(report: FitReport | LegacyFitReport) -> str:
    """Render a report as fixed-width text for terminals."""
    lines: list[str] = []
    lines.append(f"Overall score: {report.overall_score}/100")
    lines.append(report.summary)
    lines.append("")

    if isinstance(report, FitReport):
        headers = ("position", "knee", "torso", "elbow", "reach", "saddle")
        rows = [
            {
                "position": features.pedal_position,
                "knee": _format_angle(features.knee_angle),
                "torso": _format_angle(features.torso_angle),
                "elbow": _format_angle(features.elbow_angle),
                "reach": f"{features.reach_distance:.1f}",
                "saddle": f"{features.saddle_height_proxy:.1f}",
            }
            for features in (report.six_oclock, report.three_oclock)
        ]
        widths = {key: max(len(key), *(len(row[key]) for row in rows)) for key in headers}
        lines.append("  ".join(key.rjust(widths[key]) for key in headers))
        for row in rows:
            lines.append("  ".join(row[key].rjust(widths[key]) for key in headers))
        lines.append("")
        kops_state = "optimal" if report.kops.is_optimal else "out of range"
        lines.append(f"KOPS offset: {report.kops.horizontal_offset_cm:+.1f} cm ({kops_state})")
        lines.append(
            "Consistency: "
            f"torso Δ {report.consistency.torso_angle_delta:.1f}°, "
            f"elbow Δ {report.consistency.elbow_angle_delta:.1f}° "
            f"({'stable' if report.consistency.is_consistent else 'unstable'})"
        )
        for issue in report.consistency.issues:
            lines.append(f"  - {issue}")
    else:
        angles = report.angles
        lines.append(
            f"Knee {_format_angle(angles.knee_angle)}, torso {_format_angle(angles.torso_angle)}, "
            f"elbow {_format_angle(angles.elbow_angle)}"
        )

    lines.append("")
    if report.recommendations:
        lines.append("Recommendations:")
        for idx, rec in enumerate(report.recommendations, start=1):
            lines.append(f"  {idx}. [{rec.priority}] {rec.type}: {rec.adjustment_text}")
            lines.append(f"     {rec.description}")
    else:
        lines.append("Recommendations: none")

    diagnostics = getattr(report, "diagnostics", ())
    if diagnostics:
        lines.append("")
        lines.append("Diagnostics:")
        lines.extend(f"  - {item}" for item in diagnostics)
    return "\n".join(lines)


@dataclass(frozen=True)
class BatchRow:
    """Outcome of one request in a batch run."""

    source: str
    report: FitReport | LegacyFitReport | None = None
    error: str | None = None

    def to_record(self, config: FitConfig | None = None) -> dict[str, Any]:
        record: dict[str, Any] = {column: None for column in BATCH_COLUMNS}
        record["source"] = self.source
        if self.report is None:
            record["status"] = "error"
            record["error"] = self.error
            return record
        report = self.report
        record["status"] = "ok"
        record["overall_score"] = report.overall_score
        record["tier"] = score_tier(report.overall_score, config)
        record["recommendations"] = ";".join(rec.type for rec in report.recommendations)
        if isinstance(report, FitReport):
            record["mode"] = "two-photo"
            record["kops_offset_cm"] = round(report.kops.horizontal_offset_cm, 2)
            record["kops_optimal"] = report.kops.is_optimal
            record["consistent"] = report.consistency.is_consistent
            record["diagnostics"] = ";".join(report.diagnostics)
        else:
            record["mode"] = "single-photo"
        return record


def analyze_request_file(path: Path | str, config: FitConfig | None = None) -> BatchRow:
    """Analyse one request file; fit errors are captured on the row instead of raised."""
    source = str(path)
    try:
        report = analyze_request(load_request(path), config)
    except FitAnalysisError as exc:
        return BatchRow(source=source, error=str(exc))
    return BatchRow(source=source, report=report)


def reports_to_dataframe(rows: Iterable[BatchRow], config: FitConfig | None = None) -> pd.DataFrame:
    """Tabulate batch outcomes, one row per request."""
    records = [row.to_record(config) for row in rows]
    df = pd.DataFrame.from_records(records, columns=list(BATCH_COLUMNS))
    if df.empty:
        return df
    df["overall_score"] = df["overall_score"].astype("Int64")
    return df.sort_values("source").reset_index(drop=True)


__all__ = [
    "BATCH_COLUMNS",
    "BatchRow",
    "parse_photo",
    "analyze_request",
    "analyze_request_file",
    "load_request",
    "render_report_text",
    "reports_to_dataframe",
]
