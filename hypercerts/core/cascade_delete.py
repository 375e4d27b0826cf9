#!/usr/bin/env python3
"""
Cascading Delete Engine - remove a record and everything that links to it

Sequence for one root:
1. get the root (missing root -> RecordNotFoundError, nothing touched)
2. scan each dependent collection for backlinks, concurrently
3. any scan failed -> BacklinkDiscoveryError, nothing touched
4. ask for confirmation when dependents exist and force is off
5. delete dependents in rule order, one at a time; a failed delete is a
   warning on the report and the cascade moves on
6. delete the root last; failure raises CascadeDeleteError carrying the report
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from rich.console import Console
from rich.markup import escape

from hypercerts.atproto import collections as nsid
from hypercerts.atproto.uri import parse_record_uri, extract_rkey
from hypercerts.core.backlinks import (
    FieldPath, LocalBacklinkIndex, BacklinkScan, SUBJECT, SUBJECTS,
)
from hypercerts.core.config import HypercertsConfig
from hypercerts.core.error_handler import (
    HypercertsError,
    RecordNotFoundError,
    MalformedReferenceError,
    BacklinkDiscoveryError,
    CascadeDeleteError,
)
from hypercerts.core.hc_logger import cascade_logger


@dataclass(frozen=True)
class DependentRule:
    """One kind of record that must go before the root"""
    label: str
    collection: str
    field_path: FieldPath


# Deletion order
ACTIVITY_DEPENDENTS = (
    DependentRule("attachment", nsid.COLLECTION_ATTACHMENT, SUBJECTS),
    DependentRule("measurement", nsid.COLLECTION_MEASUREMENT, SUBJECT),
    DependentRule("evaluation", nsid.COLLECTION_EVALUATION, SUBJECT),
)


class CascadeStatus(Enum):
    PENDING = "pending"
    DELETED = "deleted"      # root gone, dependents best-effort
    ABORTED = "aborted"      # operator declined, nothing deleted
    FAILED = "failed"        # root could not be deleted


@dataclass
class DependentOutcome:
    label: str
    collection: str
    found: int = 0
    deleted: int = 0
    skipped: int = 0         # malformed references


@dataclass
class CascadeReport:
    """What a cascade did, returned by value"""
    root_uri: str
    status: CascadeStatus = CascadeStatus.PENDING
    root_deleted: bool = False
    outcomes: List[DependentOutcome] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    attempted: List[str] = field(default_factory=list)   # delete calls in the order issued

    @property
    def total_found(self) -> int:
        return sum(o.found for o in self.outcomes)

    @property
    def total_deleted(self) -> int:
        return sum(o.deleted for o in self.outcomes)

    def outcome(self, label: str) -> Optional[DependentOutcome]:
        for o in self.outcomes:
            if o.label == label:
                return o
        return None


class CascadeDeleteEngine:
    """Deletes a root record after the records that reference it"""

    def __init__(self, client, index: Optional[LocalBacklinkIndex] = None, confirmer=None,
                 console: Optional[Console] = None,
                 rules: Sequence[DependentRule] = ACTIVITY_DEPENDENTS,
                 root_label: str = "activity",
                 max_workers: Optional[int] = None):
        self.client = client
        self.index = index or LocalBacklinkIndex(client)
        self.confirmer = confirmer
        self.console = console or Console()
        self.rules = tuple(rules)
        self.root_label = root_label
        self.max_workers = max_workers or HypercertsConfig.DISCOVERY_WORKERS

    # ===== Discovery =====

    def discover(self, owner: str, root_uri: str) -> Dict[DependentRule, BacklinkScan]:
        """Run every dependent scan; raises BacklinkDiscoveryError if any listing failed"""
        if not self.rules:
            return {}
        workers = max(1, min(self.max_workers, len(self.rules)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                rule: executor.submit(self.index.scan, owner, rule.collection, rule.field_path, root_uri)
                for rule in self.rules
            }
            scans = {rule: future.result() for rule, future in futures.items()}

        failures = {rule.label: scan.error for rule, scan in scans.items() if scan.failed}
        if failures:
            cascade_logger.log_warning("DISCOVERY_FAILED", root_uri, {"failed": ", ".join(failures)})
            raise BacklinkDiscoveryError(root_uri, failures)
        return scans

    # ===== Cascade =====

    def delete_with_cascade(self, owner: str, root_uri: str, force: bool = False) -> CascadeReport:
        root = parse_record_uri(root_uri)
        root_key = extract_rkey(root_uri)

        try:
            self.client.get_record(owner, root.collection, root.rkey)
        except RecordNotFoundError as e:
            raise RecordNotFoundError(root_uri, f"{self.root_label} not found: {root_key}") from e

        scans = self.discover(owner, root_uri)
        report = CascadeReport(root_uri=root_uri)
        for rule in self.rules:
            report.outcomes.append(DependentOutcome(rule.label, rule.collection, found=len(scans[rule])))

        if not force and report.total_found > 0:
            self._print_preview(root_key, report)
            if not self._confirm("Proceed?"):
                self.console.print("Aborted.")
                report.status = CascadeStatus.ABORTED
                cascade_logger.log_info("CASCADE_ABORTED", root_uri)
                return report

        for rule in self.rules:
            self._delete_dependents(owner, rule, scans[rule].uris, report)

        report.attempted.append(root_uri)
        try:
            self.client.delete_record(owner, root.collection, root.rkey)
        except HypercertsError as e:
            report.status = CascadeStatus.FAILED
            cascade_logger.log_error("ROOT_DELETE_FAILED", root_uri, {"error": str(e)})
            raise CascadeDeleteError(f"failed to delete {self.root_label}: {e}", report=report) from e

        report.root_deleted = True
        report.status = CascadeStatus.DELETED
        self._print_result(root_key, report)
        cascade_logger.log_info("CASCADE_DONE", root_uri, {
            "dependents_deleted": report.total_deleted, "warnings": len(report.warnings)
        })
        return report

    def _delete_dependents(self, owner: str, rule: DependentRule, uris: List[str], report: CascadeReport):
        outcome = report.outcome(rule.label)
        for uri in uris:
            try:
                ref = parse_record_uri(uri)
            except MalformedReferenceError:
                cascade_logger.log_debug("DEPENDENT_SKIPPED", uri, {"label": rule.label})
                outcome.skipped += 1
                continue

            report.attempted.append(uri)
            try:
                self.client.delete_record(owner, ref.collection, ref.rkey)
            except HypercertsError as e:
                warning = f"failed to delete {rule.label} {extract_rkey(uri)}: {e}"
                report.warnings.append(warning)
                self.console.print(f"  [yellow]Warning:[/yellow] {escape(warning)}", highlight=False)
                continue
            outcome.deleted += 1

    def _confirm(self, message: str) -> bool:
        if self.confirmer is None:
            return False
        return self.confirmer.confirm(message)

    def _print_preview(self, root_key: str, report: CascadeReport):
        self.console.print(
            f"Will delete {self.root_label} {root_key} and {report.total_found} linked record(s):",
            highlight=False
        )
        for o in report.outcomes:
            if o.found:
                self.console.print(f"  {o.found} {o.label}(s)", highlight=False)

    def _print_result(self, root_key: str, report: CascadeReport):
        self.console.print(f"Deleted {self.root_label}: {root_key}", highlight=False)
        for o in report.outcomes:
            if o.deleted:
                self.console.print(f"  Deleted {o.deleted} linked {o.label}(s)", highlight=False)

    # ===== Bulk =====

    def delete_many(self, owner: str, root_uris: Sequence[str]) -> List[CascadeReport]:
        """
        One aggregate confirmation, then a forced cascade per root.
        A failing root becomes a warning; the rest are still attempted.
        """
        if not root_uris:
            return []
        if self.confirmer is not None:
            approved = self.confirmer.confirm_bulk(f"Delete {len(root_uris)} {self.root_label} records?",
                                                   len(root_uris))
        else:
            approved = len(root_uris) <= 1
        if not approved:
            self.console.print("Aborted.")
            return []

        reports = []
        for root_uri in root_uris:
            try:
                reports.append(self.delete_with_cascade(owner, root_uri, force=True))
            except HypercertsError as e:
                self.console.print(f"  [yellow]Warning:[/yellow] {escape(str(e))}", highlight=False)
                report = getattr(e, "report", None) or CascadeReport(root_uri=root_uri)
                report.status = CascadeStatus.FAILED
                if str(e) not in report.warnings:
                    report.warnings.append(str(e))
                reports.append(report)
        return reports
