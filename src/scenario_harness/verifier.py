"""Browser verification of the deployed endpoint."""

import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from .config import VerifySettings, settings
from .schemas.run import StepResult, VerificationReport
from .schemas.scenario import VerificationStep

logger = logging.getLogger(__name__)

ENDPOINT_PLACEHOLDER = "{{endpoint}}"


class StepFailed(Exception):
    """A verification step's expectation did not hold."""


def parse_env_values(text: str) -> dict[str, str]:
    """Parse ``KEY=VALUE`` lines, stripping surrounding quotes."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        values[key.strip()] = value
    return values


def discover_endpoint(workdir: Path, verify: VerifySettings | None = None) -> str | None:
    """Find the deployed endpoint URL from the deployment environment.

    Args:
        workdir: Directory the deployment was made from
        verify: Verification settings (defaults to settings)

    Returns:
        First non-empty value among the configured keys, or None
    """
    verify = verify or settings.verify
    try:
        result = subprocess.run(
            verify.env_command,
            cwd=workdir,
            capture_output=True,
            text=True,
            timeout=verify.env_command_timeout_sec,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.warning("Endpoint discovery failed: %s", exc)
        return None
    if result.returncode != 0:
        logger.warning(
            "Endpoint discovery command exited %d: %s", result.returncode, result.stderr.strip()
        )
        return None

    values = parse_env_values(result.stdout)
    for key in verify.endpoint_keys:
        if values.get(key):
            return values[key]
    return None


def resolve_url(url: str | None, endpoint: str) -> str:
    """Substitute the endpoint into a step URL; no URL means the endpoint itself."""
    if not url:
        return endpoint
    return url.replace(ENDPOINT_PLACEHOLDER, endpoint.rstrip("/"))


def _run_step(
    page: Any,
    step: VerificationStep,
    name: str,
    endpoint: str,
    artifacts_dir: Path,
    verify: VerifySettings,
) -> str | None:
    timeout = verify.step_timeout_ms

    if step.action == "navigate":
        url = resolve_url(step.url, endpoint)
        response = page.goto(url, timeout=timeout)
        status = response.status if response is not None else None
        if status is None:
            raise StepFailed(f"no response from {url}")
        if step.status_code is not None:
            if status != step.status_code:
                raise StepFailed(f"expected HTTP {step.status_code}, got {status}")
        elif status >= 400:
            raise StepFailed(f"HTTP {status} from {url}")
        if step.value and step.value not in page.locator("body").inner_text(timeout=timeout):
            raise StepFailed(f"page body does not contain {step.value!r}")
        return f"HTTP {status}"

    if step.action == "click":
        page.locator(step.selector).first.click(timeout=timeout)
        return None

    if step.action == "type":
        page.locator(step.selector).first.fill(step.value, timeout=timeout)
        return None

    if step.action == "wait":
        if step.selector:
            page.wait_for_selector(step.selector, timeout=timeout)
        else:
            page.wait_for_timeout(verify.wait_fallback_ms)
        return None

    if step.action == "assert-visible":
        locator = page.locator(step.selector).first
        locator.wait_for(state="visible", timeout=timeout)
        if step.value and step.value not in locator.inner_text(timeout=timeout):
            raise StepFailed(f"{step.selector} does not contain {step.value!r}")
        return None

    if step.action == "assert-nonempty":
        count = page.locator(step.selector).count()
        if count == 0:
            raise StepFailed(f"no elements match {step.selector}")
        return f"{count} element(s)"

    if step.action == "screenshot":
        artifacts_dir.mkdir(parents=True, exist_ok=True)
        path = artifacts_dir / f"{name}.png"
        page.screenshot(path=str(path), full_page=True)
        return str(path)

    raise StepFailed(f"unsupported action {step.action!r}")


def run_steps(
    page: Any,
    steps: Sequence[VerificationStep],
    endpoint: str,
    artifacts_dir: Path,
    verify: VerifySettings | None = None,
) -> VerificationReport:
    """Run every step against ``page``; a failure never stops later steps."""
    verify = verify or settings.verify
    results: dict[str, StepResult] = {}
    for index, step in enumerate(steps):
        name = step.display_name(index)
        try:
            details = _run_step(page, step, name, endpoint, artifacts_dir, verify)
        except (StepFailed, PlaywrightError) as exc:
            logger.info("Verification step %s failed: %s", name, exc)
            results[name] = StepResult(passed=False, error=str(exc))
        else:
            results[name] = StepResult(passed=True, details=details)

    passed_count = sum(1 for result in results.values() if result.passed)
    return VerificationReport(
        steps=results,
        passed=passed_count == len(results),
        summary=f"{passed_count}/{len(results)} verification steps passed",
    )


def run_verification(
    steps: Sequence[VerificationStep],
    endpoint: str | None,
    *,
    page: Any = None,
    artifacts_dir: Path | None = None,
    verify: VerifySettings | None = None,
) -> VerificationReport:
    """Run a scenario's verification steps.

    Args:
        steps: Ordered verification steps
        endpoint: Deployed endpoint URL
        page: Playwright page to drive; a headless Chromium page is
            launched when omitted
        artifacts_dir: Where screenshots are written
        verify: Verification settings (defaults to settings)

    Returns:
        VerificationReport with one result per step
    """
    verify = verify or settings.verify
    artifacts_dir = artifacts_dir or Path.cwd()

    if not steps:
        return VerificationReport(passed=True, summary="no verification steps defined")
    if not endpoint:
        return VerificationReport(
            steps={"endpoint_discovery": StepResult(passed=False, error="no endpoint URL")},
            passed=False,
            summary="endpoint not found",
        )

    logger.info("Running %d verification steps against %s", len(steps), endpoint)
    if page is not None:
        return run_steps(page, steps, endpoint, artifacts_dir, verify)

    try:
        with sync_playwright() as playwright:
            browser = playwright.chromium.launch(headless=verify.headless)
            try:
                return run_steps(browser.new_page(), steps, endpoint, artifacts_dir, verify)
            finally:
                browser.close()
    except PlaywrightError as exc:
        logger.error("Browser could not be started: %s", exc)
        return VerificationReport(
            steps={"browser_launch": StepResult(passed=False, error=str(exc))},
            passed=False,
            summary="browser could not be started",
        )
