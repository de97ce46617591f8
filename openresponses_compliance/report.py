"""Machine-readable run reports: JSON document and JUnit XML."""

from __future__ import annotations

from pathlib import Path
from typing import Any
import xml.etree.ElementTree as ET

from .models import RunSummary, TestResult, TestStatus

SUITE_NAME = "openresponses-compliance"


def build_report(summary: RunSummary, results: list[TestResult]) -> dict[str, Any]:
    """Summary counts plus every terminal result, serialized verbatim."""

    return {
        "summary": summary.model_dump(),
        "results": [result.as_serializable() for result in results if result.status.is_terminal],
    }


def write_junit(results: list[TestResult], junit_file: Path, *, base_url: str) -> None:
    failed = [result for result in results if result.status == TestStatus.FAILED]
    suite = ET.Element(
        "testsuite",
        attrib={
            "name": SUITE_NAME,
            "tests": str(len(results)),
            "failures": str(len(failed)),
            "time": str(sum(result.duration_ms or 0 for result in results) / 1000),
        },
    )
    properties = ET.SubElement(suite, "properties")
    ET.SubElement(properties, "property", attrib={"name": "base_url", "value": base_url})
    for result in results:
        case = ET.SubElement(
            suite,
            "testcase",
            attrib={
                "classname": SUITE_NAME,
                "name": result.id,
                "time": str((result.duration_ms or 0) / 1000),
            },
        )
        if result.status == TestStatus.FAILED:
            errors = result.errors or ["Test failed"]
            failure = ET.SubElement(case, "failure", attrib={"message": errors[0]})
            failure.text = "\n".join(errors)
    junit_file.parent.mkdir(parents=True, exist_ok=True)
    ET.ElementTree(suite).write(junit_file, encoding="utf-8", xml_declaration=True)
