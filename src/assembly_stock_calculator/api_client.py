import logging
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests.exceptions import HTTPError, RequestException

from .snapshot import InventorySnapshot, SnapshotError, snapshot_from_data

logger = logging.getLogger(__name__)


def _unwrap_list(payload: Any, key: str) -> Optional[List[Dict[str, Any]]]:
    """
    Extracts a list of records from an API response.

    The inventory API answers either with a bare list, a `{"success": ..., "data": [...]}`
    envelope, or a keyed page such as `{"parts": [...], "total": ...}`.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for candidate in ("data", key):
            value = payload.get(candidate)
            if isinstance(value, list):
                return value
    return None


class ApiClient:
    """
    Read-only client for the inventory REST API.

    Every public method returns a tuple of (data or None, list of warning/error messages);
    network and HTTP failures are reported as warnings instead of raised.
    """
    def __init__(self, url: str, token: str, timeout: float = 10.0):
        """
        Initializes the API client.

        Args:
            url: The base URL of the inventory API (e.g. http://localhost:5000).
            token: The bearer token for authentication.
            timeout: Per-request timeout in seconds.
        """
        self.base_url = url.rstrip('/')
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        })

    def _get_json(self, path: str, what: str, params: Optional[Dict[str, Any]] = None) -> Tuple[Optional[Any], List[str]]:
        warnings_list: List[str] = []
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json(), warnings_list
        except HTTPError as e:
            status_code = e.response.status_code if e.response is not None else 'N/A'
            err_detail = str(e)
            if e.response is not None:
                try: # Try to get a more specific error from the response body
                    response_json = e.response.json()
                except ValueError:
                    response_json = None # Keep original err_detail if the body is not JSON
                if isinstance(response_json, dict):
                    err_detail = response_json.get('message') or response_json.get('error') or err_detail

            if status_code == 404:
                log_msg = f"{what} not found (GET {path}). Status: 404. Detail: {err_detail}"
                logger.warning(log_msg)
            else:
                log_msg = f"API HTTPError fetching {what} (GET {path}): Status {status_code}. Detail: {err_detail}"
                logger.error(log_msg)
            warnings_list.append(log_msg)
            return None, warnings_list
        except ValueError as e: # Body was not JSON
            err_msg = f"API returned invalid JSON for {what} (GET {path}): {e}"
            logger.error(err_msg)
            warnings_list.append(err_msg)
            return None, warnings_list
        except RequestException as e: # Connection errors, timeouts
            err_msg = f"API RequestException fetching {what} (GET {path}): {e}"
            logger.error(err_msg)
            warnings_list.append(err_msg)
            return None, warnings_list

    def _get_list(self, path: str, key: str, what: str, params: Optional[Dict[str, Any]] = None) -> Tuple[Optional[List[Dict[str, Any]]], List[str]]:
        payload, warnings_list = self._get_json(path, what, params=params)
        if payload is None:
            return None, warnings_list
        records = _unwrap_list(payload, key)
        if records is None:
            warn_msg = f"Unexpected response shape for {what} (GET {path}); expected a list."
            logger.warning(warn_msg)
            warnings_list.append(warn_msg)
        return records, warnings_list

    def get_parts(self) -> Tuple[Optional[List[Dict[str, Any]]], List[str]]:
        """Fetches all active parts. A limit of 1000 or more asks the API for an unpaginated list."""
        return self._get_list("/api/parts", "parts", "parts", params={"limit": 1000})

    def get_assembly_details(self, assembly_id: str) -> Tuple[Optional[List[Dict[str, Any]]], List[str]]:
        """Fetches the BOM lines of one assembly, with their part references populated."""
        payload, warnings_list = self._get_json(f"/api/assemblies/{assembly_id}/details", f"details of assembly {assembly_id}")
        if payload is None:
            return None, warnings_list
        data = payload.get("data", payload) if isinstance(payload, dict) else payload
        details = data.get("details") if isinstance(data, dict) else data
        if not isinstance(details, list):
            warn_msg = f"Unexpected response shape for details of assembly {assembly_id}; expected a list."
            logger.warning(warn_msg)
            warnings_list.append(warn_msg)
            return None, warnings_list
        return details, warnings_list

    def get_assemblies(self) -> Tuple[Optional[List[Dict[str, Any]]], List[str]]:
        """Fetches all assemblies and attaches each one's BOM lines as `bom_items`."""
        assemblies, warnings_list = self._get_list("/api/assemblies", "assemblies", "assemblies")
        if assemblies is None:
            return None, warnings_list

        for assembly in assemblies:
            assembly_id = assembly.get("_id") or assembly.get("id")
            if not assembly_id:
                warn_msg = f"Assembly record without an id skipped: {assembly.get('name', 'N/A')}"
                logger.warning(warn_msg)
                warnings_list.append(warn_msg)
                continue
            if "bom_items" in assembly:
                continue
            details, detail_warnings = self.get_assembly_details(assembly_id)
            warnings_list.extend(detail_warnings)
            # An assembly whose BOM could not be fetched is kept with an empty BOM (buildable 0)
            assembly["bom_items"] = details or []
        return [a for a in assemblies if a.get("_id") or a.get("id")], warnings_list

    def get_purchase_orders(self) -> Tuple[Optional[List[Dict[str, Any]]], List[str]]:
        return self._get_list("/api/purchase-orders", "purchase_orders", "purchase orders", params={"limit": 1000})

    def get_raw_items(self) -> Tuple[Optional[List[Dict[str, Any]]], List[str]]:
        return self._get_list("/api/raw-items", "raw_items", "raw items", params={"limit": 1000})

    def get_raw_item_purchase_orders(self) -> Tuple[Optional[List[Dict[str, Any]]], List[str]]:
        """Fetches purchase orders for raw materials. Their lines reference `raw_item_id`."""
        return self._get_list("/api/raw-item-purchase-orders", "purchase_orders", "raw item purchase orders", params={"limit": 1000})

    def get_snapshot(self) -> Tuple[Optional[InventorySnapshot], List[str]]:
        """
        Fetches parts, raw items, assemblies and both kinds of purchase orders and builds one snapshot.

        Parts are required; anything else that cannot be fetched only produces warnings.
        """
        warnings_list: List[str] = []
        parts, part_warnings = self.get_parts()
        warnings_list.extend(part_warnings)
        if parts is None:
            return None, warnings_list

        assemblies, assembly_warnings = self.get_assemblies()
        warnings_list.extend(assembly_warnings)
        purchase_orders, order_warnings = self.get_purchase_orders()
        warnings_list.extend(order_warnings)
        raw_items, raw_item_warnings = self.get_raw_items()
        warnings_list.extend(raw_item_warnings)
        raw_item_orders, raw_order_warnings = self.get_raw_item_purchase_orders()
        warnings_list.extend(raw_order_warnings)

        raw_data = {
            "parts": parts,
            "assemblies": assemblies or [],
            "raw_items": raw_items or [],
            "purchase_orders": (purchase_orders or []) + (raw_item_orders or []),
        }
        try:
            snapshot = snapshot_from_data(raw_data)
        except SnapshotError as e:
            err_msg = f"API data could not be converted into a snapshot: {e}"
            logger.error(err_msg)
            warnings_list.append(err_msg)
            return None, warnings_list
        warnings_list.extend(snapshot.warnings)
        return snapshot, warnings_list
