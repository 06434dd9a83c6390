"""Ledger entries: why an override exists and what security data backs it."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from manifest import resolve_overrides
from model import Appendix, appendix_key, is_nested, now_iso

log = logging.getLogger(__name__)

ReasonLookup = Callable[[str], Optional[str]]

SEVERITIES = ("low", "medium", "high", "critical")


@dataclass
class SecurityDetail:
    package_name: str
    reason: str = ""
    cve: Optional[str] = None
    severity: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SecurityDetail":
        name = payload.get("packageName") or payload.get("package_name")
        if not isinstance(name, str) or not name:
            raise ValueError("security record is missing packageName")

        def text(key: str) -> Optional[str]:
            value = payload.get(key)
            return value if isinstance(value, str) and value else None

        severity = text("severity")
        if severity and severity.lower() not in SEVERITIES:
            log.debug("Unknown severity %r for %s", severity, name)
        return cls(
            package_name=name,
            reason=text("reason") or "",
            cve=text("cve"),
            severity=severity.lower() if severity else None,
            description=text("description"),
            url=text("url"),
        )


def explicit_lookup(reason: Optional[str]) -> ReasonLookup:
    return lambda _package: reason or None


def security_lookup(details: Sequence[SecurityDetail]) -> ReasonLookup:
    def lookup(package: str) -> Optional[str]:
        detail = find_security_detail(package, details)
        if detail is None:
            return None
        return detail.reason or None

    return lookup


def manual_lookup(manual: Mapping[str, str]) -> ReasonLookup:
    return lambda package: manual.get(package) or None


def first_reason(package: str, lookups: Iterable[ReasonLookup]) -> Optional[str]:
    for lookup in lookups:
        reason = lookup(package)
        if reason:
            return reason
    return None


def find_security_detail(package: str, details: Sequence[SecurityDetail]) -> Optional[SecurityDetail]:
    for detail in details:
        if detail.package_name == package:
            return detail
    return None


@dataclass
class LedgerInputs:
    """Everything that can feed a ledger for this run."""

    reason: Optional[str] = None
    security_details: List[SecurityDetail] = field(default_factory=list)
    security_provider: Optional[str] = None
    manual_reasons: Dict[str, str] = field(default_factory=dict)

    def lookups(self) -> List[ReasonLookup]:
        # Order is priority: explicit > security record > manual.
        return [
            explicit_lookup(self.reason),
            security_lookup(self.security_details),
            manual_lookup(self.manual_reasons),
        ]

    def reason_for(self, package: str, parent: Optional[str] = None) -> Optional[str]:
        reason = first_reason(package, self.lookups())
        if reason is None and parent:
            reason = first_reason(parent, self.lookups()[1:])
        return reason

    def security_for(self, package: str) -> Dict[str, Any]:
        detail = find_security_detail(package, self.security_details)
        if detail is None:
            return {}
        fields: Dict[str, Any] = {"securityChecked": True, "securityCheckDate": now_iso()}
        if self.security_provider:
            fields["securityProvider"] = self.security_provider
        for name in ("cve", "severity", "description", "url"):
            value = getattr(detail, name)
            if value:
                fields[name] = value
        return fields

    def ledger_for(
        self,
        package: str,
        existing: Optional[Mapping[str, Any]],
        parent: Optional[str] = None,
    ) -> Dict[str, Any]:
        security = self.security_for(package)
        if existing:
            return augment_ledger(existing, security)
        return new_ledger(self.reason_for(package, parent), security)


def new_ledger(reason: Optional[str], security: Mapping[str, Any]) -> Dict[str, Any]:
    ledger: Dict[str, Any] = {"addedDate": now_iso()}
    if reason:
        ledger["reason"] = reason
    ledger.update(security)
    return ledger


def augment_ledger(existing: Mapping[str, Any], security: Mapping[str, Any]) -> Dict[str, Any]:
    """Fill security fields the ledger lacks; never touch addedDate or reason."""
    ledger = dict(existing)
    if not security:
        return ledger
    already_checked = bool(ledger.get("securityChecked"))
    for name, value in security.items():
        if name == "securityCheckDate" and already_checked:
            continue
        ledger.setdefault(name, value)
    return ledger


def needs_reason(package: str, version: str, appendix: Mapping[str, Any], details: Sequence[SecurityDetail]) -> bool:
    item = appendix.get(appendix_key(package, version))
    ledger = item.get("ledger") if isinstance(item, dict) else None
    if isinstance(ledger, dict) and ledger.get("reason"):
        return False
    detail = find_security_detail(package, details)
    return not (detail and detail.reason)


def reason_candidates(
    overrides: Mapping[str, Any],
    appendix: Mapping[str, Any],
    details: Sequence[SecurityDetail] = (),
) -> List[str]:
    candidates: List[str] = []
    for package, value in overrides.items():
        if is_nested(value):
            pairs = list(value.items())
        else:
            pairs = [(package, value)]
        for name, version in pairs:
            if needs_reason(name, version, appendix, details) and name not in candidates:
                candidates.append(name)
    return candidates


def collect_reason_candidates(
    manifests: Iterable[Mapping[str, Any]],
    details: Sequence[SecurityDetail] = (),
    appendix: Optional[Appendix] = None,
) -> List[str]:
    """Override packages across ``manifests`` that still have no recorded reason."""
    candidates: List[str] = []
    for manifest in manifests:
        source = resolve_overrides(manifest)
        if source is None:
            continue
        section = manifest.get("pastoralist")
        own = section.get("appendix") if isinstance(section, dict) else None
        known: Dict[str, Any] = dict(appendix or {})
        if isinstance(own, dict):
            known.update(own)
        for name in reason_candidates(source.overrides, known, details):
            if name not in candidates:
                candidates.append(name)
    return candidates
