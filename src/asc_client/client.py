"""
Apple App Store Connect API client.

This module provides the authenticated client for the App Store Connect API:
JWT generation, rate-limited requests, status code handling, the endpoint
wrappers for apps metadata, reporting and user invitations, and the transport
used for chunked asset uploads.
"""

import hashlib
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Dict, List, Optional, Union

import jwt
import requests
from ratelimit import limits, sleep_and_retry

from .exceptions import (
    AuthenticationError,
    MalformedRequest,
    NotFoundError,
    PermissionError,
    RateLimitError,
    ServerError,
    TransportError,
    UploadCancelledError,
    UploadOperationError,
    ValidationError,
)
from .uploads import UploadCoordinator, UploadOperation, UploadOperations
from .utils import (
    relationship_data,
    validate_app_id,
    validate_email,
    validate_platform,
    validate_resource_id,
    validate_user_roles,
    validate_version_string,
)

logger = logging.getLogger(__name__)


class AppStoreVersionState:
    """Values of appStoreVersions.attributes.appStoreState."""

    DEVELOPER_REJECTED = "DEVELOPER_REJECTED"
    DEVELOPER_REMOVED_FROM_SALE = "DEVELOPER_REMOVED_FROM_SALE"
    INVALID_BINARY = "INVALID_BINARY"
    IN_REVIEW = "IN_REVIEW"
    METADATA_REJECTED = "METADATA_REJECTED"
    PENDING_APPLE_RELEASE = "PENDING_APPLE_RELEASE"
    PENDING_CONTRACT = "PENDING_CONTRACT"
    PENDING_DEVELOPER_RELEASE = "PENDING_DEVELOPER_RELEASE"
    PREORDER_READY_FOR_SALE = "PREORDER_READY_FOR_SALE"
    PREPARE_FOR_SUBMISSION = "PREPARE_FOR_SUBMISSION"
    PROCESSING_FOR_APP_STORE = "PROCESSING_FOR_APP_STORE"
    READY_FOR_SALE = "READY_FOR_SALE"
    REJECTED = "REJECTED"
    REMOVED_FROM_SALE = "REMOVED_FROM_SALE"
    REPLACED_WITH_NEW_VERSION = "REPLACED_WITH_NEW_VERSION"
    WAITING_FOR_EXPORT_COMPLIANCE = "WAITING_FOR_EXPORT_COMPLIANCE"
    WAITING_FOR_REVIEW = "WAITING_FOR_REVIEW"

    EDITABLE = (
        PREPARE_FOR_SUBMISSION,
        WAITING_FOR_REVIEW,
        IN_REVIEW,
        DEVELOPER_REJECTED,
        REJECTED,
        METADATA_REJECTED,
    )


def raise_for_status(response: requests.Response) -> None:
    """
    Map a non-success HTTP status onto the exception hierarchy.

    Raises:
        AuthenticationError: 401
        PermissionError: 403
        NotFoundError: 404
        RateLimitError: 429
        ServerError: 5xx
        TransportError: any other status >= 400
    """
    status = response.status_code
    if status < 400:
        return

    if status == 401:
        raise AuthenticationError("Authentication failed - check credentials", status)
    elif status == 403:
        raise PermissionError("Insufficient permissions for this operation", status)
    elif status == 404:
        raise NotFoundError("Requested resource not found", status)
    elif status == 429:
        raise RateLimitError("Rate limit exceeded", status)

    try:
        error_data = response.json()
        error_msg = error_data.get("errors", [{}])[0].get("detail", response.text)
    except Exception:
        error_msg = response.text
    logger.error(f"API Error {status}: {error_msg}")
    if status >= 500:
        raise ServerError(f"API Error {status}: {error_msg}", status)
    raise TransportError(f"API Error {status}: {error_msg}", status)


class AppStoreConnectAPI:
    """
    Apple App Store Connect API client.

    Args:
        key_id: Your App Store Connect API key ID
        issuer_id: Your App Store Connect API issuer ID
        private_key_path: Path to your .p8 private key file
        timeout: Timeout in seconds for API calls and upload slices
        upload_max_workers: Concurrent requests used for chunked uploads
    """

    BASE_URL = "https://api.appstoreconnect.apple.com/v1"
    TOKEN_LIFETIME = 1200  # 20 minutes, the maximum Apple accepts
    REQUEST_TIMEOUT = 30
    CANCEL_POLL_INTERVAL = 0.05

    def __init__(
        self,
        key_id: str,
        issuer_id: str,
        private_key_path: Union[str, Path],
        timeout: Optional[float] = None,
        upload_max_workers: Optional[int] = None,
    ):
        """Initialize the App Store Connect API client."""
        self.key_id = key_id
        self.issuer_id = issuer_id
        self.private_key_path = Path(private_key_path) if private_key_path else None
        self.timeout = timeout or self.REQUEST_TIMEOUT
        self.upload_max_workers = upload_max_workers
        self._token: Optional[str] = None
        self._token_expiry: Optional[int] = None
        self._token_lock = threading.Lock()
        self._upload_local = threading.local()

        # Validate required parameters
        if not all([key_id, issuer_id, private_key_path]):
            raise ValidationError("Missing required authentication parameters")

        if not self.private_key_path.exists():
            raise ValidationError(f"Private key file not found: {private_key_path}")

    @classmethod
    def from_env(cls, **kwargs) -> "AppStoreConnectAPI":
        """
        Create a client from ASC_KEY_ID, ASC_ISSUER_ID and ASC_PRIVATE_KEY_PATH.

        Keyword arguments are passed to the constructor and win over the
        environment.
        """
        params = {
            "key_id": os.environ.get("ASC_KEY_ID"),
            "issuer_id": os.environ.get("ASC_ISSUER_ID"),
            "private_key_path": os.environ.get("ASC_PRIVATE_KEY_PATH"),
        }
        params.update(kwargs)
        return cls(**params)

    def _load_private_key(self) -> str:
        """Load the private key from file."""
        try:
            with open(self.private_key_path, "r") as f:
                return f.read()
        except IOError as e:
            raise AuthenticationError(f"Failed to load private key: {e}")

    def _generate_token(self) -> str:
        """Generate a JWT token for App Store Connect API."""
        with self._token_lock:
            current_time = int(datetime.now(timezone.utc).timestamp())

            if self._token and self._token_expiry and current_time < self._token_expiry:
                return self._token

            try:
                private_key = self._load_private_key()
            except Exception as e:
                raise AuthenticationError(f"Failed to load private key: {e}")

            expiry = current_time + self.TOKEN_LIFETIME

            payload = {
                "iss": self.issuer_id,
                "exp": expiry,
                "aud": "appstoreconnect-v1",
            }

            headers = {"alg": "ES256", "kid": self.key_id, "typ": "JWT"}

            try:
                self._token = jwt.encode(
                    payload, private_key, algorithm="ES256", headers=headers
                )
            except Exception as e:
                raise AuthenticationError(f"Failed to generate JWT token: {e}")

            self._token_expiry = expiry - 60  # Refresh 1 minute before expiry
            return self._token

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for API requests."""
        token = self._generate_token()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def _make_request_raw(
        self,
        method: str = "GET",
        url: Optional[str] = None,
        endpoint: Optional[str] = None,
        params: Optional[Dict] = None,
        data: Optional[Dict] = None,
    ) -> requests.Response:
        """Make a request to the API and check its status."""
        if url is None and endpoint is not None:
            url = f"{self.BASE_URL}{endpoint}"
        elif url is None:
            raise ValidationError("Either url or endpoint must be provided")

        headers = self._get_headers()

        logger.info(f"_make_request: {method} {url}")
        if params:
            logger.info(f"_make_request: params={params}")

        try:
            response = requests.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                json=data,
                timeout=self.timeout,
            )
            logger.info(f"_make_request: Response received - status={response.status_code}")
        except requests.exceptions.Timeout as e:
            logger.error(f"_make_request: Request timed out after {self.timeout}s: {e}")
            raise TransportError(f"Request failed: {e}")
        except requests.exceptions.RequestException as e:
            logger.error(f"_make_request: Request failed: {e}")
            raise TransportError(f"Request failed: {e}")

        raise_for_status(response)
        return response

    @sleep_and_retry
    @limits(calls=3500, period=3600)  # Apple's rate limit
    def _make_request(self, *args, **kwargs) -> requests.Response:
        """Rate-limited wrapper for _make_request_raw."""
        return self._make_request_raw(*args, **kwargs)

    def _get(self, endpoint: str, params: Optional[Dict] = None) -> Optional[Dict]:
        response = self._make_request(method="GET", endpoint=endpoint, params=params)
        if response.status_code == 200:
            return response.json()
        return None

    def get_next_page(self, document: Optional[Dict]) -> Optional[Dict]:
        """Follow links.next of a paged document; None on the last page."""
        next_url = ((document or {}).get("links") or {}).get("next")
        if not next_url:
            return None
        response = self._make_request(method="GET", url=next_url)
        if response.status_code == 200:
            return response.json()
        return None

    # ===== UPLOAD TRANSPORT =====

    def _upload_session(self) -> requests.Session:
        """The calling thread's upload session, created on first use."""
        session = getattr(self._upload_local, "session", None)
        if session is None:
            session = requests.Session()
            self._upload_local.session = session
        return session

    def _discard_upload_session(self) -> None:
        """Close the calling thread's upload session and its connections."""
        session = getattr(self._upload_local, "session", None)
        if session is not None:
            self._upload_local.session = None
            session.close()

    def _send_upload(
        self, session: requests.Session, request: requests.PreparedRequest
    ) -> requests.Response:
        try:
            return session.send(request, timeout=self.timeout)
        except requests.exceptions.InvalidSchema as e:
            raise MalformedRequest(f"Cannot send {request.method} {request.url}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request failed: {e}") from e

    def _send_cancellable(
        self,
        session: requests.Session,
        request: requests.PreparedRequest,
        cancel_event: threading.Event,
    ) -> requests.Response:
        """
        Send on a helper thread while watching cancel_event.

        On cancellation the session is closed and dropped, the caller gets
        UploadCancelledError right away and the abandoned request ends with
        its socket or the client timeout.
        """
        outcome: Dict[str, Any] = {}
        done = threading.Event()

        def run():
            try:
                outcome["response"] = self._send_upload(session, request)
            except Exception as e:
                outcome["error"] = e
            finally:
                done.set()

        threading.Thread(target=run, name="asc-upload-send", daemon=True).start()

        while not done.wait(self.CANCEL_POLL_INTERVAL):
            if cancel_event.is_set():
                self._discard_upload_session()
                raise UploadCancelledError(
                    f"Upload cancelled during {request.method} {request.url}"
                )

        if "error" in outcome:
            raise outcome["error"]
        return outcome["response"]

    def send_upload_request(
        self,
        request: requests.PreparedRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> requests.Response:
        """
        Send one prepared upload request as-is.

        Upload destinations are pre-signed, so no Authorization header is
        added and the call does not count against the API rate limit. Each
        worker thread reuses its own session.

        Raises:
            UploadCancelledError: cancel_event was set before or while sending
            MalformedRequest: the URL scheme cannot be sent over HTTP
            TransportError: the request failed or returned a non-success status
        """
        if cancel_event is not None and cancel_event.is_set():
            raise UploadCancelledError(
                f"Upload cancelled before {request.method} {request.url}"
            )

        session = self._upload_session()
        if cancel_event is None:
            response = self._send_upload(session, request)
        else:
            response = self._send_cancellable(session, request, cancel_event)

        logger.info(
            f"send_upload_request: {request.method} {request.url} -> {response.status_code}"
        )
        raise_for_status(response)
        return response

    def upload_operations(
        self,
        operations,
        file: IO[bytes],
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """
        Upload a file according to the operations of an asset reservation.

        Args:
            operations: UploadOperation objects or their JSON dicts
            file: Source file opened in binary mode; the caller closes it
            cancel_event: Set it to abort the upload; slices in flight are
                abandoned and unread slices are skipped

        Raises:
            UploadOperationError: for the first slice that failed
        """
        if not isinstance(operations, UploadOperations):
            operations = UploadOperations(
                op if isinstance(op, UploadOperation) else UploadOperation.from_dict(op)
                for op in operations
            )
        coordinator = UploadCoordinator(self, max_workers=self.upload_max_workers)
        coordinator.upload(operations, file, cancel_event=cancel_event)

    # ===== APP SCREENSHOTS =====

    def create_app_screenshot(
        self, screenshot_set_id: str, file_name: str, file_size: int
    ) -> Optional[Dict]:
        """Reserve an app screenshot; the response carries its upload operations."""
        screenshot_set_id = validate_resource_id(screenshot_set_id, "Screenshot set")
        if file_size <= 0:
            raise ValidationError(f"File size must be positive, got: {file_size}")

        data = {
            "data": {
                "type": "appScreenshots",
                "attributes": {"fileName": file_name, "fileSize": file_size},
                "relationships": {
                    "appScreenshotSet": relationship_data(
                        "appScreenshotSets", screenshot_set_id
                    )
                },
            }
        }
        response = self._make_request(method="POST", endpoint="/appScreenshots", data=data)
        if response.status_code == 201:
            return response.json()
        return None

    def commit_app_screenshot(self, screenshot_id: str, checksum: str) -> Optional[Dict]:
        """Mark a reserved screenshot as uploaded."""
        screenshot_id = validate_resource_id(screenshot_id, "Screenshot")
        data = {
            "data": {
                "type": "appScreenshots",
                "id": screenshot_id,
                "attributes": {"uploaded": True, "sourceFileChecksum": checksum},
            }
        }
        response = self._make_request(
            method="PATCH", endpoint=f"/appScreenshots/{screenshot_id}", data=data
        )
        if response.status_code == 200:
            return response.json()
        return None

    def delete_app_screenshot(self, screenshot_id: str) -> bool:
        """Delete a screenshot, e.g. after a failed upload."""
        screenshot_id = validate_resource_id(screenshot_id, "Screenshot")
        response = self._make_request(
            method="DELETE", endpoint=f"/appScreenshots/{screenshot_id}"
        )
        return response.status_code == 204

    def upload_app_screenshot(
        self,
        screenshot_set_id: str,
        path: Union[str, Path],
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[Dict]:
        """
        Reserve, upload and commit a screenshot file.

        Returns:
            The committed screenshot document, or None if the reservation failed

        Raises:
            UploadOperationError: a slice failed; the reservation has been deleted
        """
        path = Path(path)
        if not path.is_file():
            raise ValidationError(f"Screenshot file not found: {path}")

        reservation = self.create_app_screenshot(
            screenshot_set_id, path.name, path.stat().st_size
        )
        if not reservation:
            return None

        screenshot_id = reservation["data"]["id"]
        operations = UploadOperations.from_response(reservation)
        logger.info(
            f"upload_app_screenshot: {path.name} in {len(operations)} operations"
        )

        with open(path, "rb") as f:
            try:
                self.upload_operations(operations, f, cancel_event=cancel_event)
            except UploadOperationError as e:
                logger.warning(
                    f"upload_app_screenshot: {path.name} failed, deleting {screenshot_id}: {e}"
                )
                try:
                    self.delete_app_screenshot(screenshot_id)
                except TransportError as delete_error:
                    logger.error(
                        f"upload_app_screenshot: could not delete {screenshot_id}: {delete_error}"
                    )
                raise
            f.seek(0)
            checksum = hashlib.md5(f.read()).hexdigest()

        return self.commit_app_screenshot(screenshot_id, checksum)

    # ===== APPS =====

    def get_apps(self, params: Optional[Dict] = None) -> Optional[Dict]:
        """Get all apps for the account."""
        try:
            return self._get("/apps", params)
        except PermissionError:
            # API key doesn't have metadata permissions
            return None

    def get_app_info(self, app_id: str) -> Optional[Dict]:
        """Get information about a specific app."""
        app_id = validate_app_id(app_id)
        logger.info(f"get_app_info: Making request for app_id={app_id}")
        return self._get(f"/apps/{app_id}")

    def list_app_infos_for_app(
        self, app_id: str, params: Optional[Dict] = None
    ) -> Optional[Dict]:
        """Get app info objects for an app (contains localization references)."""
        app_id = validate_app_id(app_id)
        return self._get(f"/apps/{app_id}/appInfos", params)

    def get_app_info_by_id(
        self, app_info_id: str, params: Optional[Dict] = None
    ) -> Optional[Dict]:
        """Read a single app info resource."""
        app_info_id = validate_resource_id(app_info_id, "App info")
        return self._get(f"/appInfos/{app_info_id}", params)

    def update_app_info(self, app_info_id: str, relationships: Dict) -> Optional[Dict]:
        """
        Update the relationships of an app info (primary/secondary categories).

        Args:
            app_info_id: The app info to update
            relationships: Mapping of relationship name to category id, e.g.
                {"primaryCategory": "GAMES"}; a None id clears it
        """
        app_info_id = validate_resource_id(app_info_id, "App info")
        data = {
            "data": {
                "type": "appInfos",
                "id": app_info_id,
                "relationships": {
                    name: relationship_data("appCategories", category_id)
                    for name, category_id in relationships.items()
                },
            }
        }
        response = self._make_request(
            method="PATCH", endpoint=f"/appInfos/{app_info_id}", data=data
        )
        if response.status_code == 200:
            return response.json()
        return None

    # ===== APP STORE VERSIONS =====

    def list_app_store_versions_for_app(
        self, app_id: str, params: Optional[Dict] = None
    ) -> Optional[Dict]:
        """Get all App Store versions for an app."""
        app_id = validate_app_id(app_id)
        logger.info(f"list_app_store_versions_for_app: app_id={app_id} params={params}")
        return self._get(f"/apps/{app_id}/appStoreVersions", params)

    def get_app_store_version(
        self, version_id: str, params: Optional[Dict] = None
    ) -> Optional[Dict]:
        """Get information for a specific App Store version."""
        version_id = validate_resource_id(version_id, "Version")
        return self._get(f"/appStoreVersions/{version_id}", params)

    def create_app_store_version(
        self,
        app_id: str,
        version_string: str,
        platform: str = "IOS",
        attributes: Optional[Dict] = None,
        build_id: Optional[str] = None,
    ) -> Optional[Dict]:
        """
        Create a new App Store version.

        Args:
            app_id: App the version belongs to
            version_string: Version such as '1.2.0'
            platform: IOS, MAC_OS or TV_OS
            attributes: Optional extra attributes (copyright, releaseType, ...)
            build_id: Optional build to attach
        """
        app_id = validate_app_id(app_id)
        version_attributes = dict(attributes or {})
        version_attributes["platform"] = validate_platform(platform)
        version_attributes["versionString"] = validate_version_string(version_string)

        relationships = {"app": relationship_data("apps", app_id)}
        if build_id:
            relationships["build"] = relationship_data("builds", build_id)

        data = {
            "data": {
                "type": "appStoreVersions",
                "attributes": version_attributes,
                "relationships": relationships,
            }
        }
        response = self._make_request(
            method="POST", endpoint="/appStoreVersions", data=data
        )
        if response.status_code == 201:
            return response.json()
        return None

    def update_app_store_version(
        self,
        version_id: str,
        attributes: Optional[Dict] = None,
        build_id: Optional[str] = None,
    ) -> Optional[Dict]:
        """Update an App Store version's attributes and/or attached build."""
        version_id = validate_resource_id(version_id, "Version")
        if "versionString" in (attributes or {}):
            validate_version_string(attributes["versionString"])

        body: Dict[str, Any] = {"type": "appStoreVersions", "id": version_id}
        if attributes:
            body["attributes"] = attributes
        if build_id:
            body["relationships"] = {"build": relationship_data("builds", build_id)}

        response = self._make_request(
            method="PATCH", endpoint=f"/appStoreVersions/{version_id}", data={"data": body}
        )
        if response.status_code == 200:
            return response.json()
        return None

    def delete_app_store_version(self, version_id: str) -> bool:
        """Delete a version that has not been submitted."""
        version_id = validate_resource_id(version_id, "Version")
        response = self._make_request(
            method="DELETE", endpoint=f"/appStoreVersions/{version_id}"
        )
        return response.status_code == 204

    def get_build_id_for_app_store_version(self, version_id: str) -> Optional[Dict]:
        """Get the linkage to the build attached to a version."""
        version_id = validate_resource_id(version_id, "Version")
        return self._get(f"/appStoreVersions/{version_id}/relationships/build")

    def update_build_for_app_store_version(
        self, version_id: str, build_id: str
    ) -> bool:
        """Attach a build to a version."""
        version_id = validate_resource_id(version_id, "Version")
        build_id = validate_resource_id(build_id, "Build")
        response = self._make_request(
            method="PATCH",
            endpoint=f"/appStoreVersions/{version_id}/relationships/build",
            data=relationship_data("builds", build_id),
        )
        return response.status_code in (200, 204)

    def get_age_rating_declaration_for_app_store_version(
        self, version_id: str, params: Optional[Dict] = None
    ) -> Optional[Dict]:
        """Get the age rating declaration of a version."""
        version_id = validate_resource_id(version_id, "Version")
        return self._get(f"/appStoreVersions/{version_id}/ageRatingDeclaration", params)

    def update_age_rating_declaration(
        self, declaration_id: str, attributes: Dict
    ) -> Optional[Dict]:
        """Provide the age-related answers used to compute the app's rating."""
        declaration_id = validate_resource_id(declaration_id, "Age rating declaration")
        if not attributes:
            raise ValidationError("Age rating declaration update needs attributes")
        data = {
            "data": {
                "type": "ageRatingDeclarations",
                "id": declaration_id,
                "attributes": attributes,
            }
        }
        response = self._make_request(
            method="PATCH", endpoint=f"/ageRatingDeclarations/{declaration_id}", data=data
        )
        if response.status_code == 200:
            return response.json()
        return None

    def get_editable_version(self, app_id: str) -> Optional[Dict]:
        """Get the first version that can still be edited (not READY_FOR_SALE etc.)."""
        versions = self.list_app_store_versions_for_app(app_id)
        if not versions or "data" not in versions:
            return None

        for version in versions["data"]:
            state = version.get("attributes", {}).get("appStoreState")
            if state in AppStoreVersionState.EDITABLE:
                return version

        return None

    # ===== POWER AND PERFORMANCE REPORTING =====

    def get_perf_power_metrics_for_app(
        self, app_id: str, params: Optional[Dict] = None
    ) -> Optional[Dict]:
        """Get power and performance metrics for the most recent versions of an app."""
        app_id = validate_app_id(app_id)
        return self._get(f"/apps/{app_id}/perfPowerMetrics", params)

    def get_perf_power_metrics_for_build(
        self, build_id: str, params: Optional[Dict] = None
    ) -> Optional[Dict]:
        """Get power and performance metrics for a specific build."""
        build_id = validate_resource_id(build_id, "Build")
        return self._get(f"/builds/{build_id}/perfPowerMetrics", params)

    def list_diagnostic_signatures_for_build(
        self, build_id: str, params: Optional[Dict] = None
    ) -> Optional[Dict]:
        """List the aggregate backtrace signatures captured for a build."""
        build_id = validate_resource_id(build_id, "Build")
        return self._get(f"/builds/{build_id}/diagnosticSignatures", params)

    def get_logs_for_diagnostic_signature(
        self, signature_id: str, params: Optional[Dict] = None
    ) -> Optional[Dict]:
        """Get the anonymized backtrace logs for a diagnostic signature."""
        signature_id = validate_resource_id(signature_id, "Diagnostic signature")
        return self._get(f"/diagnosticSignatures/{signature_id}/logs", params)

    # ===== USER INVITATIONS =====

    def list_user_invitations(self, params: Optional[Dict] = None) -> Optional[Dict]:
        """List pending invitations to join the team."""
        return self._get("/userInvitations", params)

    def get_user_invitation(
        self, invitation_id: str, params: Optional[Dict] = None
    ) -> Optional[Dict]:
        """Get a pending invitation."""
        invitation_id = validate_resource_id(invitation_id, "Invitation")
        return self._get(f"/userInvitations/{invitation_id}", params)

    def create_user_invitation(
        self,
        email: str,
        first_name: str,
        last_name: str,
        roles: List[str],
        all_apps_visible: Optional[bool] = None,
        provisioning_allowed: Optional[bool] = None,
        visible_app_ids: Optional[List[str]] = None,
    ) -> Optional[Dict]:
        """Invite a user with assigned roles to join the team."""
        if not first_name or not last_name:
            raise ValidationError("First and last name are required")

        attributes: Dict[str, Any] = {
            "email": validate_email(email),
            "firstName": first_name,
            "lastName": last_name,
            "roles": validate_user_roles(roles),
        }
        if all_apps_visible is not None:
            attributes["allAppsVisible"] = all_apps_visible
        if provisioning_allowed is not None:
            attributes["provisioningAllowed"] = provisioning_allowed

        body: Dict[str, Any] = {"type": "userInvitations", "attributes": attributes}
        if visible_app_ids:
            body["relationships"] = {
                "visibleApps": {
                    "data": [
                        {"type": "apps", "id": validate_app_id(app_id)}
                        for app_id in visible_app_ids
                    ]
                }
            }

        response = self._make_request(
            method="POST", endpoint="/userInvitations", data={"data": body}
        )
        if response.status_code == 201:
            return response.json()
        return None

    def cancel_user_invitation(self, invitation_id: str) -> bool:
        """Cancel a pending invitation."""
        invitation_id = validate_resource_id(invitation_id, "Invitation")
        response = self._make_request(
            method="DELETE", endpoint=f"/userInvitations/{invitation_id}"
        )
        return response.status_code == 204

    def list_visible_apps_for_invitation(
        self, invitation_id: str, params: Optional[Dict] = None
    ) -> Optional[Dict]:
        """List the apps a user with a pending invitation will see."""
        invitation_id = validate_resource_id(invitation_id, "Invitation")
        return self._get(f"/userInvitations/{invitation_id}/visibleApps", params)
