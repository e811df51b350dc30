from storefront.utils.errors import StorefrontError
from storefront.utils.logger import setup_logging
from storefront.utils.rate_limiter import RateLimiter, get_rate_limiter

__all__ = ["StorefrontError", "setup_logging", "RateLimiter", "get_rate_limiter"]
