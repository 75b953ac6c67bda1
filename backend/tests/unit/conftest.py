"""
Unit test fixtures and helpers.

Provides upload payloads for parser tests. These fixtures do NOT require
database connections.
"""

import json

import pytest


@pytest.fixture
def cklb_document() -> dict:
    """CKLB checklist with one STIG, three rules: two Open, one NotAFinding."""
    return {
        "title": "web01 checklist",
        "id": "5e1c2f1a-0000-4000-8000-000000000001",
        "stigs": [
            {
                "display_name": "Apache Server 2.4 UNIX Server",
                "stig_id": "Apache_Server_2-4_UNIX_Server_STIG",
                "rules": [
                    {
                        "rule_id": "SV-214228r881401_rule",
                        "group_id": "V-214228",
                        "severity": "medium",
                        "status": "open",
                        "rule_title": "The Apache web server must limit concurrent sessions.",
                        "ccis": ["CCI-000054"],
                    },
                    {
                        "rule_id": "SV-214229r881403_rule",
                        "group_id": "V-214229",
                        "severity": "high",
                        "status": "Open",
                        "group_title": "SRG-APP-000001-WSR-000002",
                        "ccis": ["CCI-000015", "CCI-000213"],
                    },
                    {
                        "rule_id": "SV-214230r881405_rule",
                        "severity": "low",
                        "status": "not_a_finding",
                        "cci": "CCI-000130, CCI-000366",
                    },
                ],
            }
        ],
    }


@pytest.fixture
def cklb_bytes(cklb_document: dict) -> bytes:
    return json.dumps(cklb_document).encode("utf-8")


@pytest.fixture
def ckl_bytes() -> bytes:
    """CKL checklist with one iSTIG and two VULNs, one without a Rule_ID."""
    return b"""<?xml version="1.0" encoding="UTF-8"?>
<!--DISA STIG Viewer :: 2.17-->
<CHECKLIST>
  <ASSET><HOST_NAME>db01</HOST_NAME></ASSET>
  <STIGS>
    <iSTIG>
      <STIG_INFO>
        <SI_DATA><SID_NAME>version</SID_NAME><SID_DATA>2</SID_DATA></SI_DATA>
        <SI_DATA><SID_NAME>stigid</SID_NAME><SID_DATA>RHEL_8_STIG</SID_DATA></SI_DATA>
        <SI_DATA><SID_NAME>title</SID_NAME><SID_DATA>Red Hat Enterprise Linux 8 STIG</SID_DATA></SI_DATA>
      </STIG_INFO>
      <VULN>
        <STIG_DATA><VULN_ATTRIBUTE>Vuln_Num</VULN_ATTRIBUTE><ATTRIBUTE_DATA>V-230221</ATTRIBUTE_DATA></STIG_DATA>
        <STIG_DATA><VULN_ATTRIBUTE>Severity</VULN_ATTRIBUTE><ATTRIBUTE_DATA>high</ATTRIBUTE_DATA></STIG_DATA>
        <STIG_DATA><VULN_ATTRIBUTE>Rule_ID</VULN_ATTRIBUTE><ATTRIBUTE_DATA>SV-230221r858734_rule</ATTRIBUTE_DATA></STIG_DATA>
        <STIG_DATA><VULN_ATTRIBUTE>Rule_Ver</VULN_ATTRIBUTE><ATTRIBUTE_DATA>RHEL-08-010000</ATTRIBUTE_DATA></STIG_DATA>
        <STIG_DATA><VULN_ATTRIBUTE>Rule_Title</VULN_ATTRIBUTE><ATTRIBUTE_DATA>RHEL 8 must be a vendor-supported release.</ATTRIBUTE_DATA></STIG_DATA>
        <STIG_DATA><VULN_ATTRIBUTE>Fix_Text</VULN_ATTRIBUTE><ATTRIBUTE_DATA>Upgrade to a supported version.</ATTRIBUTE_DATA></STIG_DATA>
        <STIG_DATA><VULN_ATTRIBUTE>CCI_REF</VULN_ATTRIBUTE><ATTRIBUTE_DATA>CCI-000366</ATTRIBUTE_DATA></STIG_DATA>
        <STIG_DATA><VULN_ATTRIBUTE>CCI_REF</VULN_ATTRIBUTE><ATTRIBUTE_DATA>CCI-001097</ATTRIBUTE_DATA></STIG_DATA>
        <STATUS>NotAFinding</STATUS>
        <FINDING_DETAILS>Release 8.8 installed</FINDING_DETAILS>
        <COMMENTS></COMMENTS>
      </VULN>
      <VULN>
        <STIG_DATA><VULN_ATTRIBUTE>Vuln_Num</VULN_ATTRIBUTE><ATTRIBUTE_DATA>V-230222</ATTRIBUTE_DATA></STIG_DATA>
        <STIG_DATA><VULN_ATTRIBUTE>Severity</VULN_ATTRIBUTE><ATTRIBUTE_DATA>medium</ATTRIBUTE_DATA></STIG_DATA>
        <STATUS>Open</STATUS>
      </VULN>
    </iSTIG>
  </STIGS>
</CHECKLIST>
"""


@pytest.fixture
def nessus_bytes() -> bytes:
    """Nessus v2 report: one host with a critical and a medium item."""
    return b"""<?xml version="1.0" ?>
<NessusClientData_v2>
  <Policy><policyName>Basic Network Scan</policyName></Policy>
  <Report name="Quarterly Scan" xmlns:cm="http://www.nessus.org/cm">
    <ReportHost name="10.0.0.5">
      <HostProperties>
        <tag name="HOST_START_TIMESTAMP">1700000000</tag>
        <tag name="host-ip">10.0.0.5</tag>
        <tag name="host-fqdn">web01.example.mil</tag>
        <tag name="mac-address">00:50:56:aa:bb:cc</tag>
        <tag name="operating-system">Linux Kernel 4.18 on Red Hat Enterprise Linux 8</tag>
      </HostProperties>
      <ReportItem port="443" svc_name="www" protocol="tcp" severity="4" pluginID="156032" pluginName="Apache Log4j RCE" pluginFamily="Misc.">
        <description>Remote code execution in Log4j.</description>
        <solution>Upgrade Log4j.</solution>
        <risk_factor>Critical</risk_factor>
        <cvss3_base_score>10.0</cvss3_base_score>
        <cve>CVE-2021-44228</cve>
        <cve>CVE-2021-45046</cve>
        <exploit_available>true</exploit_available>
      </ReportItem>
      <ReportItem port="22" svc_name="ssh" protocol="tcp" severity="2" pluginID="70658" pluginName="SSH Server CBC Mode Ciphers Enabled" pluginFamily="Misc.">
        <risk_factor>Medium</risk_factor>
        <cvss_base_score>2.6</cvss_base_score>
      </ReportItem>
    </ReportHost>
  </Report>
</NessusClientData_v2>
"""
