"""
Unit tests for CCI -> NIST control mapping and control id normalization.
"""

import pytest

from rmfwatch.services.catalog import (
    CatalogError,
    CciMapper,
    base_control_id,
    control_family,
    control_sort_key,
    normalize_control_id,
    parse_cci_list,
)

CCI_LIST = b"""<?xml version="1.0" encoding="utf-8"?>
<cci_list xmlns="http://iase.disa.mil/cci">
  <metadata><version>2022-04-05</version></metadata>
  <cci_items>
    <cci_item id="CCI-000015">
      <status>published</status>
      <definition>The organization employs automated mechanisms to support account management.</definition>
      <references>
        <reference creator="NIST" title="NIST SP 800-53" version="3" index="AC-2 (1)" />
        <reference creator="NIST" title="NIST SP 800-53 Revision 4" version="4" index="AC-2 (1)" />
      </references>
    </cci_item>
    <cci_item id="CCI-000366">
      <definition>The organization implements the security configuration settings.</definition>
      <references>
        <reference creator="DISA" title="Internal" index="X-1" />
        <reference creator="NIST" title="NIST SP 800-53 Revision 5" version="5" index="CM-6 b" />
      </references>
    </cci_item>
    <cci_item id="CCI-009999">
      <definition>Unmapped item.</definition>
    </cci_item>
  </cci_items>
</cci_list>
"""


# ---------------------------------------------------------------------------
# Control id helpers
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestControlIds:
    @pytest.mark.parametrize(
        "raw,expected",
        [("ac-2", "AC-2"), (" SC-7 ( 5 ) ", "SC-7(5)"), ("AC-2(1)", "AC-2(1)")],
    )
    def test_normalize_control_id(self, raw: str, expected: str) -> None:
        assert normalize_control_id(raw) == expected

    @pytest.mark.parametrize(
        "index,expected",
        [("AC-2 a 1", "AC-2"), ("SC-7 (5)", "SC-7(5)"), ("cm-6 b", "CM-6"), ("Appendix J", None)],
    )
    def test_base_control_id(self, index: str, expected) -> None:
        assert base_control_id(index) == expected

    def test_family_and_sort_key(self) -> None:
        assert control_family("ac-2(1)") == "AC"
        ordered = sorted(["AC-10", "AC-2(1)", "AC-2", "AC-3"], key=control_sort_key)
        assert ordered == ["AC-2", "AC-2(1)", "AC-3", "AC-10"]


# ---------------------------------------------------------------------------
# CciMapper
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestCciMapper:
    def test_map_cci_is_case_insensitive(self) -> None:
        mapper = CciMapper({"CCI-000015": "AC-2"})
        assert mapper.map_cci("cci-000015") == "AC-2"
        assert mapper.map_cci("CCI-000016") is None
        assert mapper.map_cci(None) is None

    def test_map_first_uses_first_known_cci(self) -> None:
        mapper = CciMapper({"CCI-000213": "AC-3", "CCI-000015": "AC-2"})
        assert mapper.map_first(["CCI-999999", "CCI-000015", "CCI-000213"]) == "AC-2"
        assert mapper.map_first([]) is None

    def test_mappings_are_read_only(self) -> None:
        mapper = CciMapper({"CCI-000015": "AC-2"})
        with pytest.raises(TypeError):
            mapper.mappings["CCI-000016"] = "AC-2"  # type: ignore[index]

    def test_from_cci_list(self) -> None:
        mapper = CciMapper.from_cci_list(CCI_LIST)
        assert len(mapper) == 2
        assert mapper.map_cci("CCI-000015") == "AC-2(1)"
        assert mapper.map_cci("CCI-000366") == "CM-6"


# ---------------------------------------------------------------------------
# parse_cci_list
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestParseCciList:
    def test_triples(self) -> None:
        entries = {cci: (definition, control) for cci, definition, control in parse_cci_list(CCI_LIST)}

        assert entries["CCI-000015"][1] == "AC-2(1)"
        assert entries["CCI-000366"][0].startswith("The organization implements")
        assert entries["CCI-009999"] == ("Unmapped item.", None)

    def test_wrong_root(self) -> None:
        with pytest.raises(CatalogError):
            parse_cci_list(b"<Benchmark/>")

    def test_malformed(self) -> None:
        with pytest.raises(CatalogError) as exc_info:
            parse_cci_list(b"<cci_list>")
        assert "xml" in exc_info.value.details
