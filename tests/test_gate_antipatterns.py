"""Tests for the antipattern gate (pipegate.gates.antipatterns) and tool merging."""

from __future__ import annotations

import pytest

from pipegate.gates.antipatterns import is_justified
from pipegate.lib.models import Finding
from pipegate.lib.tools import ToolRun


def _pairs(result) -> list[tuple[str, object]]:
    return [(f.rule_id, f.line) for f in result.findings]


class TestFixtures:
    """Fixture workflows through the antipattern gate."""

    def test_clean_workflow(self, make_doc, gate_result, clean_text) -> None:
        """The clean fixture has no antipatterns."""
        result = gate_result("antipattern", make_doc(clean_text))
        assert result.status == "pass"
        assert result.findings == ()

    def test_pr_target_checkout(self, make_doc, gate_result, read_workflow) -> None:
        """Checkout of the contributor head under pull_request_target fails."""
        result = gate_result("antipattern", make_doc(read_workflow("pr_target_checkout.yml")))
        assert result.status == "fail"
        assert _pairs(result) == [
            ("missing-concurrency", 3),
            ("missing-timeout", 9),
            ("untrusted-checkout", 14),
        ]


class TestErrorSuppression:
    """continue-on-error and '|| true' need a justification comment."""

    TEXT = """
        on: workflow_dispatch
        jobs:
          a:
            runs-on: ubuntu-latest
            timeout-minutes: 5
            continue-on-error: true
            steps:
              # flaky upstream mirror
              - run: make fetch || true
              - run: make lint || true
              - run: make docs || true  # docs are best-effort
              - continue-on-error: true
                run: make bench
    """

    def test_unjustified_constructs(self, make_doc, gate_result) -> None:
        """Only constructs without an adjacent comment are reported."""
        result = gate_result("antipattern", make_doc(self.TEXT))
        assert _pairs(result) == [
            ("unjustified-error-suppression", 6),
            ("unjustified-error-suppression", 10),
            ("unjustified-error-suppression", 12),
        ]
        assert "'continue-on-error: true'" in result.findings[0].message
        assert "'|| true'" in result.findings[1].message
        assert result.status == "pass"

    def test_is_justified(self, make_doc) -> None:
        """Comments above or trailing a line justify it."""
        doc = make_doc(self.TEXT)
        assert is_justified(doc, 9)
        assert is_justified(doc, 11)
        assert not is_justified(doc, 10)

    def test_reasonless_annotation_does_not_justify(self, make_doc) -> None:
        """A bare suppression annotation is not a justification."""
        doc = make_doc("""
            steps:
              # pipegate: ignore antipattern
              - run: make || true
              # pipegate: ignore antipattern -- mirror is flaky
              - run: make || true
        """)
        assert not is_justified(doc, 3)
        assert is_justified(doc, 5)


class TestTimeoutAndConcurrency:
    """Missing timeout-minutes and concurrency."""

    def test_missing_concurrency_lists_events(self, make_doc, gate_result) -> None:
        """Externally triggerable events are named in source order."""
        doc = make_doc("""
            on: [pull_request, workflow_dispatch, push]
            jobs:
              call:
                uses: org/repo/.github/workflows/ci.yml@0123456789abcdef0123456789abcdef01234567
        """)
        result = gate_result("antipattern", doc)
        assert _pairs(result) == [("missing-concurrency", 1)]
        assert "(pull_request, push)" in result.findings[0].message

    def test_internal_triggers_need_no_concurrency(self, make_doc, gate_result) -> None:
        """Schedules and manual runs are not externally triggerable."""
        doc = make_doc("""
            on:
              schedule:
                - cron: "0 0 * * *"
            jobs:
              a:
                runs-on: ubuntu-latest
                timeout-minutes: 5
                steps:
                  - run: make
        """)
        assert gate_result("antipattern", doc).findings == ()


class TestInjectionAndRemoteExecution:
    """Expression injection and curl-pipe-shell."""

    def test_expression_injection(self, make_doc, gate_result) -> None:
        """Attacker-controlled contexts in run are errors; env indirection is fine."""
        doc = make_doc("""
            on: issues
            concurrency: triage
            jobs:
              triage:
                runs-on: ubuntu-latest
                timeout-minutes: 5
                steps:
                  - run: echo "${{ github.event.issue.title }}"
                  - run: echo "${{ github.event.issue.number }}"
                  - env:
                      TITLE: ${{ github.event.issue.title }}
                    run: echo "$TITLE"
        """)
        result = gate_result("antipattern", doc)
        assert _pairs(result) == [("expression-injection", 8)]
        assert "github.event.issue.title" in result.findings[0].message

    def test_piped_remote_execution(self, make_doc, gate_result) -> None:
        """Downloads piped into a shell are warned about."""
        doc = make_doc("""
            on: workflow_dispatch
            jobs:
              a:
                runs-on: ubuntu-latest
                timeout-minutes: 5
                steps:
                  - run: |
                      curl -o install.sh https://example.com/install.sh
                      curl -fsSL https://example.com/install.sh | sudo bash
        """)
        result = gate_result("antipattern", doc)
        assert _pairs(result) == [("piped-remote-execution", 9)]

    def test_dangerous_commands(self, make_doc, gate_result) -> None:
        """Destructive commands are warned about once per line."""
        doc = make_doc("""
            on: workflow_dispatch
            jobs:
              a:
                runs-on: ubuntu-latest
                timeout-minutes: 5
                steps:
                  - run: |
                      rm -rf ./build
                      rm -rf /
                      git push --force origin main
                      git push --force origin feature
                      git reset --hard HEAD~1
                      psql -c "DROP TABLE users"
                      chmod 777 deploy.sh
                      echo ok > /etc/hosts
                  - run: make clean 2>/dev/null
        """)
        result = gate_result("antipattern", doc)
        assert result.status == "pass"
        assert _pairs(result) == [
            ("dangerous-command", 9),
            ("dangerous-command", 10),
            ("dangerous-command", 12),
            ("dangerous-command", 13),
            ("dangerous-command", 14),
            ("dangerous-command", 15),
        ]
        assert {f.severity for f in result.findings} == {"warning"}
        assert "force push to main or master" in result.findings[1].message
        assert "SQL DROP statement" in result.findings[3].message

    @pytest.mark.parametrize("command,label", [
        ("rm -rf ~/", "recursive deletion of the root or home directory"),
        ("sudo rm -fr /*", "recursive deletion of the root or home directory"),
        ("git push -f upstream master", "force push to main or master"),
        ("git reset --hard origin/main", "git reset --hard"),
        ("mysql -e 'drop database app'", "SQL DROP statement"),
        ("chmod -R 0777 /srv", "world-writable permissions"),
        ("cat image.img > /dev/sda", "redirect into a system path"),
    ])
    def test_dangerous_command_labels(self, make_doc, gate_result, command: str, label: str) -> None:
        """Each destructive command is reported with its label."""
        doc = make_doc(f"""
            on: workflow_dispatch
            jobs:
              a:
                runs-on: ubuntu-latest
                timeout-minutes: 5
                steps:
                  - run: {command}
        """)
        result = gate_result("antipattern", doc)
        assert _pairs(result) == [("dangerous-command", 7)]
        assert label in result.findings[0].message


class TestBareSuppression:
    """Annotations without a reason are flagged and cannot hide that flag."""

    def test_bare_suppression_reported(self, make_doc, gate_result) -> None:
        """The target is suppressed but the missing reason is reported."""
        doc = make_doc("""
            on: workflow_dispatch
            jobs:
              a:  # pipegate: ignore missing-timeout
                runs-on: ubuntu-latest
                steps:
                  - run: make
        """)
        result = gate_result("antipattern", doc)
        assert _pairs(result) == [("bare-suppression", 3)]
        assert result.suppressed == 1
        assert result.status == "pass"

    def test_gate_wide_bare_suppression_not_self_hiding(self, make_doc, gate_result) -> None:
        """Suppressing the whole gate still reports the missing reason."""
        doc = make_doc("""
            # pipegate: ignore-file antipattern
            on: workflow_dispatch
            jobs:
              a:
                runs-on: ubuntu-latest
                steps:
                  - run: make
        """)
        result = gate_result("antipattern", doc)
        assert _pairs(result) == [("bare-suppression", 1)]

    def test_reasoned_suppression(self, make_doc, gate_result) -> None:
        """A reason silences everything."""
        doc = make_doc("""
            on: workflow_dispatch
            jobs:
              a:  # pipegate: ignore missing-timeout -- bounded by the caller
                runs-on: ubuntu-latest
                steps:
                  - run: make
        """)
        result = gate_result("antipattern", doc)
        assert result.findings == ()
        assert result.suppressed == 1


class TestExternalToolMerge:
    """Gate runner behaviour with an external analyzer attached."""

    def _zizmor_finding(self, line: int) -> Finding:
        return Finding(
            gate_id="antipattern",
            severity="warning",
            line=line,
            message="credential persistence through GitHub Actions artifacts",
            remediation="https://docs.zizmor.sh/audits/#artipacked",
            rule_id="zizmor-artipacked",
        )

    def test_ok_outcome_merges_findings(self, make_doc, make_ctx, gate_result, clean_text, fake_tool) -> None:
        """Tool findings join the built-in ones and the tool is recorded."""
        tool = fake_tool("zizmor", ToolRun("ok", (self._zizmor_finding(20),)))
        result = gate_result("antipattern", make_doc(clean_text), make_ctx(tools={"antipattern": tool}))
        assert _pairs(result) == [("zizmor-artipacked", 20)]
        assert result.tool_used == "zizmor 9.9.9"
        assert result.status == "pass"

    def test_duplicate_tool_finding_dropped(self, make_doc, make_ctx, gate_result, read_workflow, fake_tool) -> None:
        """A tool finding repeating a built-in (line, rule) pair is dropped."""
        mapped = Finding("antipattern", "error", 14, "dangerous trigger", None, "untrusted-checkout")
        tool = fake_tool("zizmor", ToolRun("ok", (mapped,)))
        doc = make_doc(read_workflow("pr_target_checkout.yml"))
        result = gate_result("antipattern", doc, make_ctx(tools={"antipattern": tool}))
        assert [f.rule_id for f in result.findings].count("untrusted-checkout") == 1
        assert "dangerous trigger" not in [f.message for f in result.findings]

    def test_timeout_falls_back(self, make_doc, make_ctx, gate_result, clean_text, fake_tool) -> None:
        """A timeout leaves built-in results and adds an info note."""
        tool = fake_tool("zizmor", ToolRun("timeout", detail="5"))
        result = gate_result("antipattern", make_doc(clean_text), make_ctx(tools={"antipattern": tool}))
        assert result.status == "pass"
        assert result.tool_used == "built-in"
        assert _pairs(result) == [("external-tool-timeout", None)]
        note = result.findings[0]
        assert note.gate_id == "antipattern"
        assert note.severity == "info"
        assert "zizmor timed out after 5s" in note.message

    def test_failure_falls_back(self, make_doc, make_ctx, gate_result, clean_text, fake_tool) -> None:
        """A failed invocation is recorded as an info note."""
        tool = fake_tool("zizmor", ToolRun("failed", detail="exit 2: boom"))
        result = gate_result("antipattern", make_doc(clean_text), make_ctx(tools={"antipattern": tool}))
        assert _pairs(result) == [("external-tool-failed", None)]
        assert "exit 2: boom" in result.findings[0].message

    def test_unavailable_tool_not_run(self, make_doc, make_ctx, gate_result, clean_text, fake_tool) -> None:
        """A tool whose probe fails is never invoked."""
        tool = fake_tool("zizmor", ToolRun("ok"), available=False)
        result = gate_result("antipattern", make_doc(clean_text), make_ctx(tools={"antipattern": tool}))
        assert tool.calls == []
        assert result.tool_used == "built-in"

    def test_timeout_keeps_every_heuristic(self, make_doc, make_ctx, gate_result, read_workflow, fake_tool) -> None:
        """All four built-in heuristics still report when the tool times out."""
        text = read_workflow("pr_target_checkout.yml") + (
            "  lint:\n"
            "    runs-on: ubuntu-latest\n"
            "    continue-on-error: true\n"
            "    steps:\n"
            "      - run: make lint\n"
        )
        tool = fake_tool("zizmor", ToolRun("timeout", detail="5"))
        result = gate_result("antipattern", make_doc(text), make_ctx(tools={"antipattern": tool}))
        assert result.status == "fail"
        assert result.tool_used == "built-in"
        assert _pairs(result) == [
            ("external-tool-timeout", None),
            ("missing-concurrency", 3),
            ("missing-timeout", 9),
            ("untrusted-checkout", 14),
            ("missing-timeout", 16),
            ("unjustified-error-suppression", 18),
        ]
        assert result.findings[0].severity == "info"
