"""
Adapters for the two external collaborators: the identity provider (Clerk)
and the payment processor (Stripe). Routes receive them through FastAPI
dependencies so tests can swap in fakes.
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

import jwt
import requests
import stripe
from svix.webhooks import Webhook, WebhookVerificationError

import config
from errors import ServiceError, ServiceUnavailable, Unauthorized, ValidationError

logger = logging.getLogger(__name__)


class ClerkIdentityProvider:
    def __init__(self, jwt_key: Optional[str] = None, secret_key: Optional[str] = None,
                 api_url: str = config.CLERK_API_URL, webhook_secret: Optional[str] = None,
                 timeout: float = config.GATEWAY_TIMEOUT_SECONDS):
        self.jwt_key = jwt_key
        self.secret_key = secret_key
        self.api_url = api_url
        self.webhook_secret = webhook_secret
        self.timeout = timeout

    def authenticate(self, authorization: Optional[str]) -> str:
        """Return the user id of a valid "Bearer <session jwt>" header."""
        if not authorization or not authorization.startswith("Bearer "):
            raise Unauthorized()
        if not self.jwt_key:
            logger.error("CLERK_JWT_KEY is not set, rejecting authenticated request")
            raise Unauthorized("Authentication is not configured")

        token = authorization[len("Bearer "):].strip()
        try:
            claims = jwt.decode(token, self.jwt_key, algorithms=["RS256"], options={"require": ["sub", "exp"]})
        except jwt.PyJWTError as e:
            logger.warning("Rejected session token: %s", e)
            raise Unauthorized("Invalid session")
        return claims["sub"]

    def lookup_email(self, user_id: str) -> str:
        """Primary email of a user, "No Email" when it has none, "Unknown" on failure."""
        if not self.secret_key:
            return "Unknown"
        try:
            resp = requests.get(
                f"{self.api_url}/users/{user_id}",
                headers={"Authorization": f"Bearer {self.secret_key}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            addresses = resp.json().get("email_addresses") or []
        except (requests.RequestException, ValueError) as e:
            logger.warning("Email lookup for user %s failed: %s", user_id, e)
            return "Unknown"
        first = addresses[0] if addresses else None
        return (first or {}).get("email_address") or "No Email"

    def verify_webhook(self, body: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        """Check the svix signature of a webhook delivery and return its payload."""
        if not self.webhook_secret:
            logger.warning("CLERK_WEBHOOK_SECRET is not set, accepting unsigned webhook")
            try:
                return json.loads(body)
            except ValueError:
                raise ValidationError("Webhook body is not valid JSON")

        svix_headers = {
            key: headers.get(key, "")
            for key in ("svix-id", "svix-timestamp", "svix-signature")
        }
        try:
            return Webhook(self.webhook_secret).verify(body, svix_headers)
        except WebhookVerificationError as e:
            logger.warning("Rejected webhook delivery: %s", e)
            raise Unauthorized("Invalid webhook signature")


class StripePaymentGateway:
    def __init__(self, secret_key: Optional[str] = None, currency: str = config.CHECKOUT_CURRENCY,
                 base_url: str = config.PUBLIC_BASE_URL, timeout: float = config.GATEWAY_TIMEOUT_SECONDS):
        self.currency = currency
        self.success_url = f"{base_url}/success"
        self.cancel_url = f"{base_url}/checkout"
        self.client: Optional[stripe.StripeClient] = None
        if secret_key:
            self.client = stripe.StripeClient(
                secret_key,
                http_client=stripe.RequestsClient(timeout=timeout),
                max_network_retries=0,
            )

    def line_items(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not items:
            raise ValidationError("Cart is empty")
        line_items = []
        for item in items:
            name = item.get("name")
            price = item.get("price")
            quantity = item.get("quantity")
            if not name or price is None or price <= 0 or not quantity or quantity < 1:
                raise ValidationError("Each item needs a name, a positive price and a quantity")
            line_items.append({
                "price_data": {
                    "currency": self.currency,
                    "product_data": {"name": name},
                    "unit_amount": int(round(price * 100)),
                },
                "quantity": int(quantity),
            })
        return line_items

    def create_checkout_session(self, items: List[Dict[str, Any]]) -> str:
        """Open a hosted card-payment session and return its redirect URL."""
        line_items = self.line_items(items)
        if self.client is None:
            raise ServiceError("Payment gateway is not configured")
        try:
            session = self.client.checkout.sessions.create(params={
                "payment_method_types": ["card"],
                "mode": "payment",
                "line_items": line_items,
                "success_url": self.success_url,
                "cancel_url": self.cancel_url,
            })
        except stripe.APIConnectionError as e:
            logger.error("Stripe unreachable: %s", e)
            raise ServiceUnavailable("Payment gateway unavailable", details=str(e))
        except stripe.StripeError as e:
            logger.error("Stripe checkout failed: %s", e)
            raise ServiceError("Failed to create checkout session", details=str(e))
        logger.info("Opened checkout session %s for %d items", session.id, len(line_items))
        return session.url


_identity_provider: Optional[ClerkIdentityProvider] = None
_payment_gateway: Optional[StripePaymentGateway] = None


def get_identity_provider() -> ClerkIdentityProvider:
    global _identity_provider
    if _identity_provider is None:
        _identity_provider = ClerkIdentityProvider(
            jwt_key=config.CLERK_JWT_KEY,
            secret_key=config.CLERK_SECRET_KEY,
            webhook_secret=config.CLERK_WEBHOOK_SECRET,
        )
    return _identity_provider


def get_payment_gateway() -> StripePaymentGateway:
    global _payment_gateway
    if _payment_gateway is None:
        _payment_gateway = StripePaymentGateway(secret_key=config.STRIPE_SECRET_KEY)
    return _payment_gateway
