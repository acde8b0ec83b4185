"""
Diagnostics and performance report processing for asc-client.

This module turns the power/performance and diagnostic signature documents
returned by App Store Connect into pandas DataFrames and summaries.
"""

import pandas as pd
from typing import Dict, Iterable, List, Optional, Any
from .client import AppStoreConnectAPI
from .utils import build_query_params, truncate_string
from .exceptions import ValidationError

SIGNATURE_COLUMNS = ["id", "diagnostic_type", "signature", "weight"]
METRIC_COLUMNS = ["id", "device_type", "metric_type", "platform"]


def signatures_to_dataframe(documents: Iterable[Dict]) -> pd.DataFrame:
    """
    Flatten diagnostic signature documents into a DataFrame.

    Args:
        documents: One or more diagnosticSignatures response pages

    Returns:
        DataFrame with id, diagnostic_type, signature and weight columns
    """
    rows = []
    for document in documents:
        for item in (document or {}).get("data") or []:
            attributes = item.get("attributes") or {}
            rows.append(
                {
                    "id": item.get("id"),
                    "diagnostic_type": attributes.get("diagnosticType"),
                    "signature": attributes.get("signature"),
                    "weight": attributes.get("weight"),
                }
            )

    df = pd.DataFrame(rows, columns=SIGNATURE_COLUMNS)
    df["weight"] = pd.to_numeric(df["weight"], errors="coerce").fillna(0.0)
    return df


def metrics_to_dataframe(documents: Iterable[Dict]) -> pd.DataFrame:
    """Flatten perfPowerMetrics documents into a DataFrame."""
    rows = []
    for document in documents:
        for item in (document or {}).get("data") or []:
            attributes = item.get("attributes") or {}
            rows.append(
                {
                    "id": item.get("id"),
                    "device_type": attributes.get("deviceType"),
                    "metric_type": attributes.get("metricType"),
                    "platform": attributes.get("platform"),
                }
            )
    return pd.DataFrame(rows, columns=METRIC_COLUMNS)


class DiagnosticsReport:
    """
    High-level access to a build's diagnostics and an app's metrics.

    Pages are followed until the API stops returning a next link.
    """

    def __init__(self, api: AppStoreConnectAPI):
        """Initialize with an API client."""
        self.api = api

    def _collect_pages(self, first_page: Optional[Dict], max_pages: Optional[int]) -> List[Dict]:
        pages = []
        page = first_page
        while page:
            pages.append(page)
            if max_pages is not None and len(pages) >= max_pages:
                break
            page = self.api.get_next_page(page)
        return pages

    def signatures_dataframe(
        self,
        build_id: str,
        diagnostic_types: Optional[List[str]] = None,
        limit: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> pd.DataFrame:
        """
        Fetch the diagnostic signatures of a build as a DataFrame.

        Args:
            build_id: Build to inspect
            diagnostic_types: Optional filter, e.g. ["DISK_WRITES", "HANGS"]
            limit: Page size requested from the API
            max_pages: Stop after this many pages

        Returns:
            DataFrame sorted by descending weight
        """
        if limit is not None and limit <= 0:
            raise ValidationError("Limit must be positive")

        params = build_query_params(filter_diagnostic_type=diagnostic_types, limit=limit)
        first = self.api.list_diagnostic_signatures_for_build(build_id, params or None)
        df = signatures_to_dataframe(self._collect_pages(first, max_pages))
        return df.sort_values("weight", ascending=False).reset_index(drop=True)

    def metrics_dataframe(
        self,
        app_id: Optional[str] = None,
        build_id: Optional[str] = None,
        platforms: Optional[List[str]] = None,
        metric_types: Optional[List[str]] = None,
        device_types: Optional[List[str]] = None,
    ) -> pd.DataFrame:
        """Fetch perfPowerMetrics for an app or a build as a DataFrame."""
        if bool(app_id) == bool(build_id):
            raise ValidationError("Exactly one of app_id or build_id is required")

        params = build_query_params(
            filter_platform=platforms,
            filter_metric_type=metric_types,
            filter_device_type=device_types,
        )
        if app_id:
            document = self.api.get_perf_power_metrics_for_app(app_id, params or None)
        else:
            document = self.api.get_perf_power_metrics_for_build(build_id, params or None)

        return metrics_to_dataframe([document] if document else [])

    @staticmethod
    def summarize_by_type(df: pd.DataFrame) -> pd.DataFrame:
        """
        Aggregate signatures by diagnostic type.

        Returns:
            DataFrame with diagnostic_type, signatures, total_weight and
            max_weight, heaviest type first
        """
        if df.empty:
            return pd.DataFrame(
                columns=["diagnostic_type", "signatures", "total_weight", "max_weight"]
            )

        aggregated = (
            df.groupby("diagnostic_type")
            .agg(
                signatures=("id", "count"),
                total_weight=("weight", "sum"),
                max_weight=("weight", "max"),
            )
            .reset_index()
            .sort_values("total_weight", ascending=False)
            .reset_index(drop=True)
        )
        return aggregated

    @staticmethod
    def top_signatures(df: pd.DataFrame, n: int = 10, width: int = 80) -> List[Dict[str, Any]]:
        """The ``n`` heaviest signatures with their text shortened to ``width``."""
        if n <= 0:
            raise ValidationError("n must be positive")
        if df.empty:
            return []

        top = df.nlargest(n, "weight")
        return [
            {
                "id": row["id"],
                "diagnostic_type": row["diagnostic_type"],
                "weight": float(row["weight"]),
                "signature": truncate_string(row["signature"] or "", width),
            }
            for _, row in top.iterrows()
        ]


def create_diagnostics_report(
    key_id: str,
    issuer_id: str,
    private_key_path: str,
) -> DiagnosticsReport:
    """
    Convenience function to create a DiagnosticsReport with API client.

    Args:
        key_id: App Store Connect API key ID
        issuer_id: App Store Connect API issuer ID
        private_key_path: Path to private key file

    Returns:
        Configured DiagnosticsReport instance
    """
    api = AppStoreConnectAPI(
        key_id=key_id,
        issuer_id=issuer_id,
        private_key_path=private_key_path,
    )

    return DiagnosticsReport(api)
