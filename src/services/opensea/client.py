from __future__ import annotations

import json
import uuid
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter

from .models import ApiRoutes


SEAPORT_PROTOCOL = "seaport"


class OpenSeaClient:
    def __init__(
        self,
        *,
        api_base: str,
        api_key: str,
        chain: str,
        routes: ApiRoutes,
        timeout: float = 15.0,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.chain = chain
        self.routes = routes
        self.timeout = timeout
        self.session = requests.Session()
        adapter = HTTPAdapter(pool_connections=10, pool_maxsize=10, max_retries=0)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)
        self.session.headers.update(
            {
                "accept": "application/json",
                "x-api-key": api_key,
            }
        )

    def _path(self, path: str, **kwargs: Any) -> str:
        rendered = path.format(**kwargs)
        if rendered.startswith("http://") or rendered.startswith("https://"):
            return rendered
        if not rendered.startswith("/"):
            rendered = "/" + rendered
        return f"{self.api_base}{rendered}"

    def _request_id_headers(self) -> Dict[str, str]:
        return {"x-request-id": str(uuid.uuid4())}

    def _raise_for_error(self, response: requests.Response) -> None:
        if response.status_code < 400:
            return
        message = response.text
        try:
            payload = response.json()
            if isinstance(payload, dict) and payload.get("errors"):
                message = "; ".join(str(x) for x in payload["errors"])
            elif isinstance(payload, dict) and payload.get("message"):
                message = str(payload["message"])
            else:
                message = json.dumps(payload, ensure_ascii=False)
        except ValueError:
            pass
        raise RuntimeError(f"HTTP {response.status_code}: {message}")

    def _json_or_text(self, response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self.session.get(
            url,
            params=params or {},
            headers=self._request_id_headers(),
            timeout=self.timeout,
        )
        self._raise_for_error(response)
        return self._json_or_text(response)

    def _post(self, url: str, payload: Dict[str, Any]) -> Any:
        response = self.session.post(
            url,
            json=payload,
            headers={**self._request_id_headers(), "content-type": "application/json"},
            timeout=self.timeout,
        )
        self._raise_for_error(response)
        return self._json_or_text(response)

    def _results(self, payload: Any, key: str) -> List[Dict[str, Any]]:
        if isinstance(payload, dict):
            results = payload.get(key)
            if isinstance(results, list):
                return [x for x in results if isinstance(x, dict)]
        if isinstance(payload, list):
            return [x for x in payload if isinstance(x, dict)]
        return []

    def fetch_collection(self, slug: str) -> Dict[str, Any]:
        payload = self._get(self._path(self.routes.collection, slug=slug))
        return payload if isinstance(payload, dict) else {}

    def fetch_collection_stats(self, slug: str) -> Dict[str, Any]:
        payload = self._get(self._path(self.routes.collection_stats, slug=slug))
        return payload if isinstance(payload, dict) else {}

    def fetch_collection_offers(self, slug: str, limit: int = 10) -> List[Dict[str, Any]]:
        payload = self._get(
            self._path(self.routes.collection_offers, slug=slug),
            {"limit": max(1, limit)},
        )
        return self._results(payload, "offers")

    def fetch_collection_nfts(self, slug: str, limit: int = 50) -> List[Dict[str, Any]]:
        payload = self._get(
            self._path(self.routes.collection_nfts, slug=slug),
            {"limit": max(1, min(200, limit))},
        )
        return self._results(payload, "nfts")

    def fetch_account_nfts(self, address: str, limit: int = 50) -> List[Dict[str, Any]]:
        payload = self._get(
            self._path(self.routes.account_nfts, chain=self.chain, address=address),
            {"limit": max(1, min(200, limit))},
        )
        return self._results(payload, "nfts")

    def fetch_nft_listings(self, contract: str, token_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        payload = self._get(
            self._path(self.routes.nft_listings, chain=self.chain, protocol=SEAPORT_PROTOCOL),
            {
                "asset_contract_address": contract,
                "token_ids": token_id,
                "order_by": "eth_price",
                "order_direction": "asc",
                "limit": max(1, min(50, limit)),
            },
        )
        return self._results(payload, "orders")

    def fetch_collection_listings(self, slug: str, limit: int = 100) -> List[Dict[str, Any]]:
        payload = self._get(
            self._path(self.routes.collection_listings, slug=slug),
            {"limit": max(1, min(100, limit))},
        )
        return self._results(payload, "listings")

    def build_collection_offer(
        self,
        *,
        offerer: str,
        slug: str,
        protocol_address: str,
        quantity: int = 1,
    ) -> Dict[str, Any]:
        payload = {
            "offerer": offerer,
            "quantity": max(1, int(quantity)),
            "criteria": {"collection": {"slug": slug}},
            "protocol_address": protocol_address,
        }
        response = self._post(self._path(self.routes.build_offer), payload)
        return response if isinstance(response, dict) else {"response": response}

    def post_collection_offer(
        self,
        *,
        parameters: Dict[str, Any],
        signature: str,
        slug: str,
        protocol_address: str,
    ) -> Dict[str, Any]:
        payload = {
            "protocol_data": {"parameters": parameters, "signature": signature},
            "criteria": {"collection": {"slug": slug}},
            "protocol_address": protocol_address,
        }
        response = self._post(self._path(self.routes.create_offer), payload)
        return response if isinstance(response, dict) else {"response": response}

    def post_listing(
        self,
        *,
        parameters: Dict[str, Any],
        signature: str,
        protocol_address: str,
    ) -> Dict[str, Any]:
        payload = {
            "parameters": parameters,
            "signature": signature,
            "protocol_address": protocol_address,
        }
        response = self._post(
            self._path(self.routes.create_listing, chain=self.chain, protocol=SEAPORT_PROTOCOL),
            payload,
        )
        return response if isinstance(response, dict) else {"response": response}

    def fetch_fulfillment_data(
        self,
        *,
        order_hash: str,
        protocol_address: str,
        fulfiller: str,
    ) -> Dict[str, Any]:
        payload = {
            "listing": {
                "hash": order_hash,
                "chain": self.chain,
                "protocol_address": protocol_address,
            },
            "fulfiller": {"address": fulfiller},
        }
        response = self._post(self._path(self.routes.fulfillment_data), payload)
        return response if isinstance(response, dict) else {"response": response}

    def cancel_order(self, *, order_hash: str, protocol_address: str) -> Dict[str, Any]:
        url = self._path(
            self.routes.cancel_order,
            chain=self.chain,
            protocol_address=protocol_address,
            order_hash=order_hash,
        )
        response = self._post(url, {})
        return response if isinstance(response, dict) else {"response": response}
