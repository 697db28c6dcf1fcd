"""
Forward-auth validation endpoints.
Reverse proxies call /validate and honour the status code; the decision is
also exposed through X-GeoFilter-* headers.
"""
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, Response
from typing import Optional
import logging

from ..engine.evaluator import AccessPolicyEvaluator, DecisionReason
from ..engine.policy import PolicyOverride, PolicyOverrideResolver

logger = logging.getLogger(__name__)
router = APIRouter()

override_resolver = PolicyOverrideResolver()


def get_client_ip(request: Request) -> Optional[str]:
    forwarded_for = request.headers.get("X-Forwarded-For")
    ip_sources = [
        request.headers.get("X-Real-IP"),
        forwarded_for.split(",")[0].strip() if forwarded_for else None,
        request.headers.get("CF-Connecting-IP"),
        request.client.host if request.client else None,
    ]
    return next((ip for ip in ip_sources if ip and ip.strip()), None)


@router.get("/")
@router.get("/validate")
def validate_request(
    request: Request,
    blocked_countries: Optional[str] = Query(None, alias="blockedCountries"),
    allowed_countries: Optional[str] = Query(None, alias="allowedCountries"),
    block_unknown: Optional[bool] = Query(None, alias="blockUnknown"),
    ignore_local_ips: Optional[bool] = Query(None, alias="ignoreLocalIps"),
    local_ips: Optional[str] = Query(None, alias="localIps"),
):
    state = request.app.state
    with state.metrics.request_duration.time():
        client_ip = get_client_ip(request)
        forwarded_host = request.headers.get("X-Forwarded-Host")
        forwarded_uri = request.headers.get("X-Forwarded-Uri")
        user_agent = request.headers.get("User-Agent")

        logger.info(f"Validating request: IP={client_ip}, Host={forwarded_host}, URI={forwarded_uri}")

        policy = override_resolver.merge(
            state.settings.policy,
            PolicyOverride(
                blocked_countries=blocked_countries,
                allowed_countries=allowed_countries,
                local_ip_ranges=local_ips,
                block_unknown=block_unknown,
                ignore_local_ips=ignore_local_ips,
            ),
        )
        evaluator: AccessPolicyEvaluator = state.evaluator
        record = evaluator.decide(client_ip, policy, forwarded_host, forwarded_uri, user_agent)

        if record.reason is DecisionReason.SYSTEM_ERROR:
            response = Response(status_code=403 if record.is_blocked else 200)
            country_header = "error"
        elif record.is_blocked:
            response = JSONResponse(status_code=403, content={
                "message": "Access denied",
                "country": record.country_code,
                "reason": record.reason.value,
                "ipAddress": client_ip,
            })
            country_header = record.country_code or "unknown"
        else:
            response = JSONResponse(content={
                "message": "Access granted",
                "country": record.country_code,
                "ipAddress": client_ip,
            })
            country_header = record.country_code or "unknown"

        response.headers["X-GeoFilter-Access"] = record.access
        response.headers["X-GeoFilter-Country"] = country_header
        response.headers["X-GeoFilter-Reason"] = record.reason.value
        return response


@router.get("/ip")
def ip_request(request: Request):
    return {"ipAddress": get_client_ip(request)}


@router.get("/check")
def check_ip(request: Request, ip_address: str = Query(..., alias="ipAddress")):
    try:
        country_code = request.app.state.resolver.resolve(ip_address)
        return {"ipAddress": ip_address, "countryCode": country_code}
    except ValueError:
        logger.warning(f"Country check rejected non-IP input: {ip_address!r}")
        return {"ipAddress": ip_address, "countryCode": "NA", "status": "Error"}
    except Exception as e:
        logger.exception(f"Country check failed for IP {ip_address}: {e}")
        return {"ipAddress": ip_address, "countryCode": "NA", "status": "Error"}
