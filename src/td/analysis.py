"""Knowledge-silo analysis over linked files and their implementers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

from td.storage.sqlite_store import SQLiteStore

CODE_EXTENSIONS = {
    ".go", ".rs", ".py", ".js", ".ts", ".tsx", ".jsx", ".java", ".cpp", ".c",
    ".h", ".rb", ".php", ".swift", ".kt", ".scala", ".groovy", ".clj", ".erl",
    ".ex", ".lua", ".pl", ".r", ".sql", ".sh",
}
SKIP_DIRS = {".git", ".todos", "node_modules", "vendor", ".cache", "dist", "build",
             "__pycache__", ".venv"}

HIGH_RATIO = 0.3
MEDIUM_RATIO = 0.15
LOW_COVERAGE = 0.1
SOLE_CONTRIBUTOR_LIMIT = 5


@dataclass
class FileOwnership:
    file_path: str
    authors: list[str]

    @property
    def critical(self) -> bool:
        return len(self.authors) == 1


@dataclass
class AuthorContribution:
    author: str
    file_count: int = 0
    critical_risk: int = 0
    ratio_of_all: float = 0.0


@dataclass
class Pattern:
    pattern: str
    reason: str
    severity: str


@dataclass
class SiloReport:
    files: list[FileOwnership] = field(default_factory=list)
    authors: list[AuthorContribution] = field(default_factory=list)
    patterns: list[Pattern] = field(default_factory=list)
    issue_coverage: int = 0
    total_code_files: int = 0
    explored_ratio: float = 0.0
    risk_score: float = 0.0

    @property
    def critical_files(self) -> list[str]:
        return [f.file_path for f in self.files if f.critical]

    def to_dict(self) -> dict[str, Any]:
        return {
            "files": [{"file_path": f.file_path, "authors": f.authors, "critical": f.critical}
                      for f in self.files],
            "authors": [vars(a) for a in self.authors],
            "patterns": [vars(p) for p in self.patterns],
            "critical_files": self.critical_files,
            "issue_coverage": self.issue_coverage,
            "total_code_files": self.total_code_files,
            "explored_ratio": round(self.explored_ratio, 4),
            "risk_score": round(self.risk_score, 4),
        }


def severity(ratio: float) -> str:
    """Severity of a single-author file ratio."""
    if ratio >= HIGH_RATIO:
        return "high"
    if ratio > MEDIUM_RATIO:
        return "medium"
    return "low"


def count_code_files(base_dir: str) -> int:
    count = 0
    for _dirpath, dirnames, filenames in os.walk(base_dir):
        dirnames[:] = [d for d in dirnames if d not in SKIP_DIRS]
        count += sum(1 for name in filenames
                     if os.path.splitext(name)[1].lower() in CODE_EXTENSIONS)
    return count


def analyze(store: SQLiteStore, base_dir: str = "") -> SiloReport:
    report = SiloReport()
    owners: dict[str, list[str]] = {}
    for path, author in store.get_file_ownership():
        owners.setdefault(path, [])
        if author not in owners[path]:
            owners[path].append(author)
    report.files = [FileOwnership(path, sorted(authors))
                    for path, authors in sorted(owners.items())]
    report.issue_coverage = store.count_issues_with_files()

    stats: dict[str, AuthorContribution] = {}
    for fo in report.files:
        for author in fo.authors:
            ac = stats.setdefault(author, AuthorContribution(author))
            ac.file_count += 1
            if fo.critical:
                ac.critical_risk += 1
    total = len(report.files)
    for ac in stats.values():
        ac.ratio_of_all = ac.file_count / total
    report.authors = sorted(stats.values(), key=lambda a: (-a.file_count, a.author))

    if base_dir:
        report.total_code_files = count_code_files(base_dir)
        if report.total_code_files:
            report.explored_ratio = total / report.total_code_files

    report.patterns = detect_patterns(report)
    report.risk_score = risk_score(report)
    return report


def detect_patterns(report: SiloReport) -> list[Pattern]:
    patterns: list[Pattern] = []
    critical = len(report.critical_files)
    if critical:
        ratio = critical / len(report.files)
        patterns.append(Pattern(f"{critical} files with single author",
                                f"{ratio * 100:.1f}% of tracked files touched by only one developer",
                                severity(ratio)))

    if report.authors:
        top = report.authors[0]
        average = 1.0 / len(report.authors)
        if top.ratio_of_all > average * 3:
            patterns.append(Pattern(f"{top.author[:8]} owns {top.ratio_of_all * 100:.0f}% of tracked files",
                                    "Single developer has disproportionate file ownership", "high"))

    if 0 < report.explored_ratio < LOW_COVERAGE:
        patterns.append(Pattern(f"Only {report.explored_ratio * 100:.1f}% of codebase is tracked by issues",
                                "Large portions of codebase have no issue file linkage", "medium"))

    for ac in report.authors:
        if ac.critical_risk > SOLE_CONTRIBUTOR_LIMIT:
            patterns.append(Pattern(f"{ac.author[:8]} is sole contributor on {ac.critical_risk} files",
                                    "High risk of knowledge concentration", "high"))
    return patterns


def risk_score(report: SiloReport) -> float:
    """0..1, higher means knowledge is more concentrated."""
    if not report.files:
        return 0.0
    score = len(report.critical_files) / len(report.files) * 0.4

    if report.authors:
        top = report.authors[0].ratio_of_all
        if top > 0.5:
            score += 0.3
        elif top > 0.33:
            score += 0.2
        elif top > 0.25:
            score += 0.1

    if report.total_code_files > 0 and report.explored_ratio < 0.1:
        score += 0.2
    elif report.explored_ratio < 0.2:
        score += 0.1

    if sum(ac.critical_risk for ac in report.authors) > 10:
        score += 0.1
    return min(score, 1.0)
