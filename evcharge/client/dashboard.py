"""Carga del panel admin: secciones en paralelo y valores a cero si alguna falla."""
import asyncio
import copy
import logging
from typing import Optional

import httpx

from evcharge.client.api_client import API_TIMEOUT, API_URL

logger = logging.getLogger(__name__)

SUMMARY_PLACEHOLDER = {
    "overview": {
        "totalStations": 0,
        "activeStations": 0,
        "pendingStations": 0,
        "totalUsers": 0,
        "totalOwners": 0,
        "totalBookings": 0,
    },
    "revenue": {"totalRevenue": 0, "platformProfit": 0, "ownerPayouts": 0, "profitMargin": 0},
}
STATIONS_PLACEHOLDER = {"stations": [], "pagination": {"total": 0, "limit": 0, "offset": 0, "hasMore": False}}
FINANCE_PLACEHOLDER = {
    "totalRevenue": 0,
    "netRevenue": 0,
    "platformFees": 0,
    "ownerEarnings": 0,
    "refunds": 0,
    "pendingPayouts": 0,
    "paidPayouts": 0,
    "transactions": 0,
}

DASHBOARD_SECTIONS = {
    "summary": ("/admin/summary", SUMMARY_PLACEHOLDER),
    "stations": ("/admin/stations", STATIONS_PLACEHOLDER),
    "finance": ("/admin/finance/summary", FINANCE_PLACEHOLDER),
}
ANALYTICS_SECTIONS = {
    "kpis": ("/admin/analytics/kpis", {
        "totalUsers": 0,
        "activeUsers": 0,
        "totalStations": 0,
        "totalBookings": 0,
        "revenueAllTime": 0,
        "revenue30d": 0,
    }),
    "userTrends": ("/admin/analytics/users", []),
    "bookings": ("/admin/analytics/bookings", {
        "analytics": {"totalBookings": 0, "statusBreakdown": {}, "patterns": {"hourly": [0] * 24, "daily": {}}},
    }),
    "topStations": ("/admin/analytics/top-stations", []),
    "errors": ("/admin/analytics/errors", []),
}


async def _fetch(client: httpx.AsyncClient, path: str, headers: dict):
    resp = await client.get(path, headers=headers)
    resp.raise_for_status()
    return resp.json()


async def _load(sections: dict, client: Optional[httpx.AsyncClient], admin_token: Optional[str],
                base_url: Optional[str]) -> dict:
    headers = {"X-Admin-Token": admin_token} if admin_token else {}
    if client is None:
        async with httpx.AsyncClient(base_url=base_url or API_URL, timeout=API_TIMEOUT) as own:
            return await _load(sections, own, admin_token, base_url)

    names = list(sections)
    results = await asyncio.gather(
        *(_fetch(client, sections[name][0], headers) for name in names),
        return_exceptions=True,
    )
    data: dict = {"errors": {}}
    for name, result in zip(names, results):
        if isinstance(result, Exception):
            logger.debug("Sección %s del panel sin datos: %s", name, result)
            data[name] = copy.deepcopy(sections[name][1])
            data["errors"][name] = str(result) or result.__class__.__name__
        else:
            data[name] = result
    return data


async def load_admin_dashboard(client: Optional[httpx.AsyncClient] = None, admin_token: Optional[str] = None,
                               base_url: Optional[str] = None) -> dict:
    """Resumen, estaciones y finanzas; cada sección caída queda a cero y se anota en ``errors``."""
    return await _load(DASHBOARD_SECTIONS, client, admin_token, base_url)


async def load_admin_analytics(client: Optional[httpx.AsyncClient] = None, admin_token: Optional[str] = None,
                               base_url: Optional[str] = None) -> dict:
    return await _load(ANALYTICS_SECTIONS, client, admin_token, base_url)
