"""
Nessus v2 XML parser.

Accepted roots: ``NessusClientData_v2 > Report`` and a bare ``Report``,
with or without an XML namespace. Elements are matched on their local name,
so a file with one ReportHost, one ReportItem or one cve is read exactly like
one with many.

Structure:
    Report@name
      ReportHost@name
        HostProperties > tag@name (host-ip, host-fqdn, mac-address, operating-system, ...)
        ReportItem@pluginID@pluginName@pluginFamily@severity@port@protocol@svc_name
          description, solution, synopsis, plugin_output, risk_factor,
          cve*, cvss_base_score, cvss3_base_score, exploit_available,
          patch_publication_date, vuln_publication_date
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from lxml import etree

from ....utils.logging_security import sanitize_filename_for_log
from ..exceptions import InvalidFormatError
from ..models import ParsedNessusHost, ParsedNessusReport, ParsedNessusVulnerability, SeverityCounts
from .base import BaseScanParser, UploadSource, child_text, children_named, first_child, local_name

logger = logging.getLogger(__name__)

MIN_SEVERITY = 0
MAX_SEVERITY = 4


def clamp_severity(raw: Optional[str]) -> int:
    """Integer severity in 0..4; unparseable values count as informational."""
    try:
        severity = int((raw or "").strip())
    except ValueError:
        return MIN_SEVERITY
    return max(MIN_SEVERITY, min(MAX_SEVERITY, severity))


def _float(raw: Optional[str]) -> Optional[float]:
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _port(raw: Optional[str]) -> Optional[int]:
    try:
        return int(raw) if raw is not None else None
    except ValueError:
        return None


class NessusParser(BaseScanParser):
    """
    Parse Nessus scan exports into host and vulnerability drafts.

    Per-host severity counters are folded from the host's items, so for
    every host critical + high + medium + low + info == total items.
    """

    def parse(self, source: UploadSource, filename: Optional[str] = None) -> ParsedNessusReport:
        """
        Parse a .nessus upload.

        Args:
            source: Upload content (bytes, path or binary file object).
            filename: Original upload name; the scan name falls back to it.

        Returns:
            ParsedNessusReport with hosts in document order.

        Raises:
            InvalidFormatError: If the content is not XML or has no Report element.
        """
        content, filename = self._read_upload(source, filename)
        filename = filename or "upload.nessus"

        try:
            root = self._parse_xml(content)
        except etree.XMLSyntaxError as e:
            raise InvalidFormatError(
                message="Nessus upload is not well-formed XML",
                parser_errors={"xml": str(e)},
                source_file=filename,
            ) from e

        report = root if local_name(root) == "Report" else first_child(root, "Report")
        if report is None:
            raise InvalidFormatError(
                message="Invalid Nessus file format: no Report element found",
                parser_errors={"xml": f"Root element <{local_name(root)}> has no <Report> child"},
                source_file=filename,
            )

        hosts = tuple(self._parse_host(element) for element in children_named(report, "ReportHost"))
        start_times = [t for t in (self._host_start(h) for h in children_named(report, "ReportHost")) if t]

        parsed = ParsedNessusReport(
            scan_name=report.get("name") or self._scan_name_from_filename(filename),
            filename=filename,
            hosts=hosts,
            scan_date=min(start_times) if start_times else None,
        )

        logger.info(
            "Parsed Nessus report %s: %d hosts, %d vulnerabilities",
            sanitize_filename_for_log(filename),
            len(parsed.hosts),
            parsed.total_vulnerabilities,
        )
        return parsed

    @staticmethod
    def _scan_name_from_filename(filename: str) -> str:
        return filename[: -len(".nessus")] if filename.endswith(".nessus") else filename

    @staticmethod
    def _host_properties(host: etree._Element) -> Dict[str, str]:
        properties = first_child(host, "HostProperties")
        if properties is None:
            return {}
        return {
            tag.get("name"): tag.text.strip()
            for tag in children_named(properties, "tag")
            if tag.get("name") and tag.text and tag.text.strip()
        }

    def _host_start(self, host: etree._Element) -> Optional[datetime]:
        timestamp = self._host_properties(host).get("HOST_START_TIMESTAMP")
        if not timestamp:
            return None
        try:
            return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).replace(tzinfo=None)
        except (ValueError, OverflowError, OSError):
            return None

    def _parse_host(self, host: etree._Element) -> ParsedNessusHost:
        name = (host.get("name") or "").strip()
        properties = self._host_properties(host)
        vulnerabilities = tuple(self._parse_item(item) for item in children_named(host, "ReportItem"))

        return ParsedNessusHost(
            name=name,
            ip_address=properties.get("host-ip") or name,
            hostname=properties.get("host-fqdn") or properties.get("netbios-name") or name,
            mac_address=properties.get("mac-address"),
            operating_system=properties.get("operating-system") or properties.get("os"),
            vulnerabilities=vulnerabilities,
            counts=SeverityCounts.from_severities([v.severity for v in vulnerabilities]),
        )

    def _parse_item(self, item: etree._Element) -> ParsedNessusVulnerability:
        cves: List[str] = [c.text.strip() for c in children_named(item, "cve") if c.text and c.text.strip()]
        exploit = child_text(item, "exploit_available")

        return ParsedNessusVulnerability(
            plugin_id=(item.get("pluginID") or "0").strip(),
            plugin_name=item.get("pluginName") or "",
            severity=clamp_severity(item.get("severity")),
            plugin_family=item.get("pluginFamily"),
            port=_port(item.get("port")),
            protocol=item.get("protocol"),
            service=item.get("svc_name"),
            description=child_text(item, "description"),
            solution=child_text(item, "solution"),
            synopsis=child_text(item, "synopsis"),
            plugin_output=child_text(item, "plugin_output"),
            risk_factor=child_text(item, "risk_factor"),
            cve=", ".join(cves) if cves else None,
            cvss_base_score=_float(child_text(item, "cvss_base_score")),
            cvss3_base_score=_float(child_text(item, "cvss3_base_score")),
            exploit_available=(exploit or "").lower() == "true",
            patch_publication_date=child_text(item, "patch_publication_date"),
            vuln_publication_date=child_text(item, "vuln_publication_date"),
        )
