"""
Reconciliation driver: brings the output directory in line with the configuration.

Workflow:
    1. Resolve the certificate authority (reuse or generate).
    2. For each configured site, reuse or issue its certificate.
    3. Return a Report with one entry per identity.

A storage problem on one site is recorded as REJECTED and the remaining sites
are still processed. Problems with the authority itself abort the run, since no
site can be issued without it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from .authority import AuthorityManager, Approver
from .config import Config
from .errors import StorageError
from .leaf import LeafIssuer
from .outcome import Outcome
from .pki import utcnow
from .store import KeyMaterialStore

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportEntry:
    name: str
    kind: str  # "authority" | "site"
    outcome: Outcome
    detail: str = ""


@dataclass
class Report:
    """Per-identity outcomes of one reconciliation run."""
    entries: List[ReportEntry] = field(default_factory=list)
    dry_run: bool = False

    def add(self, name: str, kind: str, outcome: Outcome, detail: str = "") -> None:
        self.entries.append(ReportEntry(name, kind, outcome, detail))

    def by_outcome(self, outcome: Outcome) -> List[ReportEntry]:
        return [e for e in self.entries if e.outcome is outcome]

    @property
    def ok(self) -> bool:
        return not self.by_outcome(Outcome.REJECTED)

    def lines(self) -> List[str]:
        prefix = {
            Outcome.REUSED: "[..] ",
            Outcome.REGENERATED: "[++] ",
            Outcome.REJECTED: "[XX] ",
        }
        out = []
        for e in self.entries:
            verb = e.outcome.value
            if self.dry_run and e.outcome is Outcome.REGENERATED:
                verb = "would regenerate"
            line = f"{prefix[e.outcome]}{e.kind} {e.name}: {verb}"
            if e.detail:
                line += f" ({e.detail})"
            out.append(line)
        return out


class ReconciliationDriver:
    """
    Runs one reconciliation pass over a configuration.

    Args:
        store (KeyMaterialStore): Output directory for all key material.
        clock (callable): Returns the current UTC time.
        approve (callable | None): Consulted before a new authority is generated.
        dry_run (bool): Report decisions without generating or writing anything.
    """

    def __init__(
        self,
        store: KeyMaterialStore,
        *,
        clock: Callable[[], datetime] = utcnow,
        approve: Optional[Approver] = None,
        dry_run: bool = False,
    ) -> None:
        self.store = store
        self.clock = clock
        self.approve = approve
        self.dry_run = dry_run

    def run(self, config: Config) -> Report:
        """
        Reconcile the authority and every site.

        Args:
            config (Config): Validated configuration.

        Returns:
            Report: One entry for the authority followed by one per site, in configuration order.

        Raises:
            StorageError: The authority's material is unreadable, corrupt or cannot be written.
            ReconcileAborted: Generation of a new authority was declined.
            CryptoError: Key generation or signing failed.
        """
        report = Report(dry_run=self.dry_run)
        authorities = AuthorityManager(
            self.store, policy=config.policy, clock=self.clock,
            approve=self.approve, dry_run=self.dry_run,
        )
        issuer = LeafIssuer(self.store, policy=config.policy, clock=self.clock, dry_run=self.dry_run)

        authority = authorities.resolve(config.authority, config.identity)
        report.add(authority.name, "authority", authority.outcome, authority.reason)

        for site in config.sites:
            try:
                result = issuer.issue(site, authority)
            except StorageError as e:  # One unreadable site does not stop the others
                LOGGER.error("Site %s rejected: %s", site.primary_name, e)
                report.add(site.primary_name, "site", Outcome.REJECTED, str(e))
                continue
            report.add(result.name, "site", result.outcome, result.reason)

        LOGGER.info(
            "Reconciliation finished: %d reused, %d regenerated, %d rejected",
            len(report.by_outcome(Outcome.REUSED)),
            len(report.by_outcome(Outcome.REGENERATED)),
            len(report.by_outcome(Outcome.REJECTED)),
        )
        return report


def reconcile(config: Config, output_dir: str, **kwargs) -> Report:
    """Convenience wrapper: reconcile `config` into `output_dir`."""
    return ReconciliationDriver(KeyMaterialStore(output_dir), **kwargs).run(config)
