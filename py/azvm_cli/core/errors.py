"""Failure classification and reporting.

Every failure raised inside an invocation goes through
:meth:`ErrorReporter.handle` exactly once. The reporter classifies the failure,
logs it at the level its classification calls for, shows at most one
notification per distinct message and records the classification on the
invocation's telemetry.
"""

from __future__ import annotations

import asyncio
import platform
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from urllib.parse import urlencode

import structlog

from azvm_cli import __version__
from azvm_cli.core.context import ActionContext, Notifier
from azvm_cli.core.exceptions import (
    ConfigError,
    InvalidInputError,
    NodeNotFoundError,
    PageFetchError,
    RemoteError,
    UserCancelledError,
)
from azvm_cli.core.models import Classification, ErrorReport, NotificationAction, Severity

logger = structlog.get_logger(__name__)

QUOTA_DOCS_URL = "https://learn.microsoft.com/azure/quotas/per-vm-quota-requests"
SKU_DOCS_URL = "https://learn.microsoft.com/azure/azure-resource-manager/troubleshooting/error-sku-not-available"
RBAC_DOCS_URL = "https://learn.microsoft.com/azure/role-based-access-control/troubleshooting"
SIGN_IN_COMMAND = "azureVirtualMachines.signIn"
LOAD_MORE_COMMAND = "azureVirtualMachines.loadMore"
REFRESH_COMMAND = "azureVirtualMachines.refresh"
REPORT_ISSUE_COMMAND = "azureVirtualMachines.reportIssue"

_REPORT_ATTR = "__azvm_report__"

ErrorHandler = Callable[[ActionContext], None]


@dataclass(frozen=True)
class KnownError:
    hint: str
    action: NotificationAction | None = None


_SIGN_IN = NotificationAction(title="Sign in", command_id=SIGN_IN_COMMAND)
_QUOTA = NotificationAction(title="Request quota increase", url=QUOTA_DOCS_URL)

KNOWN_ERRORS: Mapping[str, KnownError] = {
    "quotaexceeded": KnownError("Request a quota increase or choose a smaller VM size.", _QUOTA),
    "operationnotallowed": KnownError("The subscription quota may be exhausted for this VM size.", _QUOTA),
    "skunotavailable": KnownError(
        "The VM size is not offered in this region; pick another size or region.",
        NotificationAction(title="Learn more", url=SKU_DOCS_URL),
    ),
    "allocationfailed": KnownError("Azure could not allocate capacity; retry later or pick another size."),
    "authorizationfailed": KnownError(
        "Your account lacks permission for this operation.",
        NotificationAction(title="Learn more", url=RBAC_DOCS_URL),
    ),
    "expiredauthenticationtoken": KnownError("Your sign-in has expired.", _SIGN_IN),
    "invalidauthenticationtoken": KnownError("Your sign-in is no longer valid.", _SIGN_IN),
    "notsignedin": KnownError("Run 'az login' and try again.", _SIGN_IN),
    "resourcenotfound": KnownError(
        "The resource no longer exists; refresh the tree.",
        NotificationAction(title="Refresh", command_id=REFRESH_COMMAND),
    ),
    "resourcegroupnotfound": KnownError(
        "The resource group no longer exists; refresh the tree.",
        NotificationAction(title="Refresh", command_id=REFRESH_COMMAND),
    ),
    "subscriptionnotfound": KnownError("The subscription is not available to the signed-in account."),
    "conflict": KnownError("Another operation is in progress on this resource; retry when it completes."),
    "operationnotallowedonvmstate": KnownError("The VM is not in a state that allows this operation."),
    "publicipnotfound": KnownError("Attach a public IP address to the VM or connect through its private network."),
}


def _describe(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or type(exc).__name__


class ErrorClassifier:
    """Maps a raised failure to a :class:`ErrorReport`."""

    def __init__(self, known_errors: Mapping[str, KnownError] = KNOWN_ERRORS) -> None:
        self._known_errors = {code.lower(): info for code, info in known_errors.items()}

    def classify(self, exc: BaseException) -> ErrorReport:
        if isinstance(exc, (UserCancelledError, asyncio.CancelledError)):
            return ErrorReport(classification=Classification.USER_CANCELLED, message=_describe(exc))

        if isinstance(exc, PageFetchError):
            cause = exc.__cause__ or exc
            if exc.mid_pagination:
                return ErrorReport(
                    classification=Classification.FETCH_INCONSISTENCY,
                    message=f"Failed to load more items: {_describe(cause)}",
                    severity=Severity.WARNING,
                    actions=(NotificationAction(title="Retry", command_id=LOAD_MORE_COMMAND, args=(exc.node_id,)),),
                )
            return self.classify(cause)

        if isinstance(exc, RemoteError) and exc.code:
            known = self._known_errors.get(exc.code.lower())
            if known is not None:
                return ErrorReport(
                    classification=Classification.KNOWN_ERROR,
                    message=f"{exc.message.rstrip('.')}. {known.hint}",
                    severity=Severity.WARNING,
                    actions=(known.action,) if known.action else (),
                )

        if isinstance(exc, (ConfigError, InvalidInputError, NodeNotFoundError)):
            return ErrorReport(
                classification=Classification.KNOWN_ERROR,
                message=_describe(exc),
                severity=Severity.WARNING,
            )

        return ErrorReport(
            classification=Classification.UNEXPECTED_ERROR,
            message=_describe(exc),
            severity=Severity.ERROR,
        )


@dataclass(frozen=True)
class IssueDetails:
    callback_id: str
    error_type: str
    message: str
    properties: Mapping[str, str]


class ErrorReporter:
    """Logs, notifies and records telemetry for classified failures."""

    def __init__(self, notifier: Notifier, classifier: ErrorClassifier | None = None) -> None:
        self._notifier = notifier
        self._classifier = classifier or ErrorClassifier()
        self._handlers: list[ErrorHandler] = []
        self._frozen = False
        self.last_issue: IssueDetails | None = None

    def register_error_handler(self, handler: ErrorHandler) -> None:
        """Add a hook that may adjust a context's error handling before reporting."""
        if self._frozen:
            raise RuntimeError("Error handlers can only be registered during activation")
        self._handlers.append(handler)

    def freeze(self) -> None:
        self._frozen = True

    def handle(self, context: ActionContext, exc: BaseException) -> ErrorReport:
        previous = getattr(exc, _REPORT_ATTR, None)
        if isinstance(previous, ErrorReport):
            logger.debug("error-already-reported", command=context.callback_id, error_type=type(exc).__name__)
            return previous

        report = self._classifier.classify(exc)
        for handler in self._handlers:
            handler(context)

        self._log(context, exc, report)
        self._record(context, exc, report)

        if report.classification is Classification.UNEXPECTED_ERROR:
            self.last_issue = IssueDetails(
                callback_id=context.callback_id,
                error_type=type(exc).__name__,
                message=report.message,
                properties=dict(context.error_handling.issue_properties),
            )
            if not context.error_handling.suppress_report_issue:
                report = report.model_copy(
                    update={
                        "actions": (
                            *report.actions,
                            NotificationAction(title="Report an Issue", command_id=REPORT_ISSUE_COMMAND),
                        )
                    }
                )

        self._notify(context, report)
        setattr(exc, _REPORT_ATTR, report)
        return report

    def _log(self, context: ActionContext, exc: BaseException, report: ErrorReport) -> None:
        log = logger.bind(command=context.callback_id, classification=report.classification.value)
        if report.classification is Classification.USER_CANCELLED:
            log.debug("command-cancelled")
        elif report.classification is Classification.UNEXPECTED_ERROR:
            log.error("command-failed", error=report.message, exc_info=exc)
        else:
            log.warning("command-error", error=report.message, error_type=type(exc).__name__)

    def _record(self, context: ActionContext, exc: BaseException, report: ErrorReport) -> None:
        context.telemetry.properties["classification"] = report.classification.value
        if report.classification is not Classification.USER_CANCELLED:
            context.telemetry.properties["error_type"] = type(exc).__name__
            context.telemetry.properties["error_message"] = report.message

    def _notify(self, context: ActionContext, report: ErrorReport) -> None:
        if report.severity is None or context.error_handling.suppress_display:
            return
        key = (report.severity, report.message)
        if key in context.error_handling.notified:
            return
        context.error_handling.notified.add(key)
        try:
            self._notifier.show(report.severity, report.message, report.actions)
        except Exception as exc:
            logger.warning("notification-failed", command=context.callback_id, error=str(exc))


def suppress_report_issue(context: ActionContext) -> None:
    """Error handler that hides the per-error "Report an Issue" action."""
    context.error_handling.suppress_report_issue = True


def build_issue_url(base_url: str, issue: IssueDetails | None) -> str:
    """Pre-fill a new-issue page with the most recent unexpected failure."""
    lines = [
        f"Extension version: {__version__}",
        f"Python: {platform.python_version()}",
        f"OS: {platform.system()} {platform.release()}",
    ]
    title = "Issue report"
    if issue is not None:
        title = f"{issue.error_type} in {issue.callback_id}"
        lines.extend(["", f"Command: {issue.callback_id}", f"Error: {issue.message}"])
        lines.extend(f"{key}: {value}" for key, value in sorted(issue.properties.items()))
    return f"{base_url}?{urlencode({'title': title, 'body': chr(10).join(lines)})}"


__all__ = [
    "KNOWN_ERRORS",
    "LOAD_MORE_COMMAND",
    "REFRESH_COMMAND",
    "REPORT_ISSUE_COMMAND",
    "SIGN_IN_COMMAND",
    "ErrorClassifier",
    "ErrorHandler",
    "ErrorReporter",
    "IssueDetails",
    "KnownError",
    "build_issue_url",
    "suppress_report_issue",
]
