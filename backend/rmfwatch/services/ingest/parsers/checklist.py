"""
STIG checklist parser (CKLB JSON and CKL XML).

Upload shapes:
- CKLB: ``{"title", "id", "stigs": [{"display_name"|"stig_name", "stig_id",
  "rules": [{"rule_id", "group_id", "severity", "status", "ccis", ...}]}]}``
- CKL: ``CHECKLIST > STIGS > iSTIG > {STIG_INFO, VULN[]}`` where each VULN
  carries STIG_DATA attribute/value pairs plus STATUS, FINDING_DETAILS and
  COMMENTS elements.

JSON is attempted first; XML is the fallback. One ScanDraft is produced per
STIG in the upload, each with its own (title, checklist id) key. Rules
without a rule identifier cannot be keyed and are dropped; the number
dropped is reported on the result.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from lxml import etree

from ....utils.logging_security import sanitize_filename_for_log
from ..exceptions import InvalidFormatError
from ..models import (
    ChecklistFormat,
    FindingDraft,
    FindingStatus,
    ParsedChecklist,
    ScanDraft,
    distinct_scan_drafts,
)
from ..normalizer import normalize_severity, normalize_status
from .base import BaseScanParser, UploadSource, child_text, children_named, first_child, local_name

logger = logging.getLogger(__name__)

DEFAULT_SCAN_TITLE = "STIG Checklist"


def _text(value: Any) -> Optional[str]:
    """Stripped string form of a JSON scalar, None when empty."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _split_ccis(value: Any) -> Tuple[str, ...]:
    if isinstance(value, list):
        items = [_text(v) for v in value]
    elif isinstance(value, str):
        items = [_text(v) for v in value.split(",")]
    else:
        items = []
    return tuple(dict.fromkeys(i for i in items if i))


def resolve_group_id(group_id: Optional[str], vuln_num: Optional[str], rule_id: str) -> str:
    """Explicit group id, else the vuln number, else the first hyphen segment of the rule id."""
    return group_id or vuln_num or rule_id.split("-")[0]


def resolve_scan_title(*candidates: Optional[str]) -> str:
    """First non-empty candidate, in precedence order."""
    for candidate in candidates:
        if candidate:
            return candidate
    return DEFAULT_SCAN_TITLE


class ChecklistParser(BaseScanParser):
    """
    Parse STIG checklists into finding and scan drafts.

    Example:
        >>> parser = ChecklistParser()
        >>> parsed = parser.parse(upload_bytes, system_id=12, filename="web01.cklb")
        >>> parsed.finding_count
        184
    """

    def parse(self, source: UploadSource, system_id: int, filename: Optional[str] = None) -> ParsedChecklist:
        """
        Parse a checklist upload.

        Args:
            source: Upload content (bytes, path or binary file object).
            system_id: System the findings are recorded against.
            filename: Original upload name, last resort for the scan title.

        Returns:
            ParsedChecklist with one ScanDraft per STIG.

        Raises:
            InvalidFormatError: If the upload is neither CKLB JSON nor CKL XML,
                or exceeds the upload size limit.
        """
        content, filename = self._read_upload(source, filename)
        parser_errors: Dict[str, str] = {}

        try:
            document = json.loads(content)
        except ValueError as e:
            parser_errors["json"] = str(e)
        else:
            if isinstance(document, dict) and isinstance(document.get("stigs"), list):
                return self._log_result(self._parse_cklb(document, system_id, filename))
            parser_errors["json"] = "JSON document has no 'stigs' array"

        try:
            root = self._parse_xml(content)
        except etree.XMLSyntaxError as e:
            parser_errors["xml"] = str(e)
        else:
            if local_name(root) == "CHECKLIST":
                return self._log_result(self._parse_ckl(root, system_id, filename))
            parser_errors["xml"] = f"Unexpected root element <{local_name(root)}>, expected <CHECKLIST>"

        logger.warning(
            "Rejected checklist upload %s: %s",
            sanitize_filename_for_log(filename),
            "; ".join(f"{fmt}: {msg}" for fmt, msg in parser_errors.items()),
        )
        raise InvalidFormatError(
            message="Upload is neither a CKLB (JSON) nor a CKL (XML) checklist",
            parser_errors=parser_errors,
            source_file=filename,
        )

    def _log_result(self, parsed: ParsedChecklist) -> ParsedChecklist:
        logger.info(
            "Parsed %s checklist %s: %d scans, %d findings, %d rules dropped",
            parsed.source_format.value,
            sanitize_filename_for_log(parsed.source_file),
            len(parsed.scans),
            parsed.finding_count,
            parsed.dropped_rules,
        )
        return parsed

    # ----- CKLB (JSON) -----

    def _parse_cklb(self, document: Dict[str, Any], system_id: int, filename: Optional[str]) -> ParsedChecklist:
        scans: List[ScanDraft] = []
        dropped = 0

        for stig in document["stigs"]:
            if not isinstance(stig, dict):
                continue
            findings: List[FindingDraft] = []
            for rule in stig.get("rules") or []:
                draft = self._cklb_rule(rule) if isinstance(rule, dict) else None
                if draft is None:
                    dropped += 1
                    continue
                findings.append(draft)

            scans.append(
                ScanDraft(
                    title=resolve_scan_title(
                        _text(stig.get("display_name")),
                        _text(stig.get("stig_name")),
                        _text(document.get("title")),
                        filename,
                    ),
                    checklist_id=_text(stig.get("stig_id")) or _text(document.get("id")),
                    findings=tuple(findings),
                )
            )

        return ParsedChecklist(
            system_id=system_id,
            source_format=ChecklistFormat.CKLB,
            scans=distinct_scan_drafts(scans),
            dropped_rules=dropped,
            source_file=filename,
        )

    def _cklb_rule(self, rule: Dict[str, Any]) -> Optional[FindingDraft]:
        rule_id = _text(rule.get("rule_id")) or _text(rule.get("rule_id_src"))
        if not rule_id:
            return None

        ccis = _split_ccis(rule.get("ccis")) or _split_ccis(rule.get("cci"))
        return FindingDraft(
            rule_id=rule_id,
            group_id=resolve_group_id(_text(rule.get("group_id")), _text(rule.get("vuln_num")), rule_id),
            status=normalize_status(_text(rule.get("status"))) or FindingStatus.NOT_REVIEWED,
            severity=normalize_severity(_text(rule.get("severity"))),
            rule_title=_text(rule.get("rule_title")) or _text(rule.get("group_title")),
            rule_version=_text(rule.get("rule_version")),
            ccis=ccis,
            finding_details=_text(rule.get("finding_details")),
            comments=_text(rule.get("comments")),
            check_content=_text(rule.get("check_content")),
            fix_text=_text(rule.get("fix_text")),
            discussion=_text(rule.get("discussion")),
        )

    # ----- CKL (XML) -----

    def _parse_ckl(self, root: etree._Element, system_id: int, filename: Optional[str]) -> ParsedChecklist:
        scans: List[ScanDraft] = []
        dropped = 0

        stigs = first_child(root, "STIGS")
        istigs = list(children_named(stigs, "iSTIG")) if stigs is not None else []

        for istig in istigs:
            info = self._stig_info(istig)
            findings: List[FindingDraft] = []
            for vuln in children_named(istig, "VULN"):
                draft = self._ckl_vuln(vuln)
                if draft is None:
                    dropped += 1
                    continue
                findings.append(draft)

            scans.append(
                ScanDraft(
                    title=resolve_scan_title(info.get("title"), info.get("stigid"), filename),
                    checklist_id=info.get("stigid"),
                    findings=tuple(findings),
                )
            )

        return ParsedChecklist(
            system_id=system_id,
            source_format=ChecklistFormat.CKL,
            scans=distinct_scan_drafts(scans),
            dropped_rules=dropped,
            source_file=filename,
        )

    @staticmethod
    def _stig_info(istig: etree._Element) -> Dict[str, str]:
        """SID_NAME -> SID_DATA pairs from STIG_INFO."""
        info: Dict[str, str] = {}
        stig_info = first_child(istig, "STIG_INFO")
        if stig_info is None:
            return info
        for si_data in children_named(stig_info, "SI_DATA"):
            name = child_text(si_data, "SID_NAME")
            value = child_text(si_data, "SID_DATA")
            if name and value:
                info[name] = value
        return info

    @staticmethod
    def _vuln_attributes(vuln: etree._Element) -> Dict[str, List[str]]:
        """VULN_ATTRIBUTE -> ATTRIBUTE_DATA values; attributes such as CCI_REF repeat."""
        attributes: Dict[str, List[str]] = {}
        for stig_data in children_named(vuln, "STIG_DATA"):
            name = child_text(stig_data, "VULN_ATTRIBUTE")
            value = child_text(stig_data, "ATTRIBUTE_DATA")
            if name and value:
                attributes.setdefault(name, []).append(value)
        return attributes

    def _ckl_vuln(self, vuln: etree._Element) -> Optional[FindingDraft]:
        attributes = self._vuln_attributes(vuln)

        def attr(name: str) -> Optional[str]:
            values = attributes.get(name)
            return values[0] if values else None

        rule_id = attr("Rule_ID")
        if not rule_id:
            return None

        return FindingDraft(
            rule_id=rule_id,
            group_id=resolve_group_id(None, attr("Vuln_Num"), rule_id),
            status=normalize_status(child_text(vuln, "STATUS")) or FindingStatus.NOT_REVIEWED,
            severity=normalize_severity(attr("Severity")),
            rule_title=attr("Rule_Title") or attr("Group_Title"),
            rule_version=attr("Rule_Ver"),
            ccis=tuple(dict.fromkeys(attributes.get("CCI_REF", []))),
            finding_details=child_text(vuln, "FINDING_DETAILS"),
            comments=child_text(vuln, "COMMENTS"),
            check_content=attr("Check_Content"),
            fix_text=attr("Fix_Text"),
            discussion=attr("Vuln_Discuss"),
        )
