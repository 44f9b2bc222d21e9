"""
Navigation helpers shared by the lifecycle orchestrator and the logout service.
"""

import logging
from typing import Optional
from urllib.parse import quote

from auctionz_shared.interfaces import IRouter, IPlatformAccess
from auctionz_shared.models import LifecycleConfig

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"
HOME_PATH = "/"

# Characters left unescaped by encodeURIComponent
_URI_COMPONENT_SAFE = "!~*'()"


def login_redirect_path(config: LifecycleConfig, router: Optional[IRouter]) -> str:
    """
    Work out where to send the user after a session ends.

    Args:
        config: Lifecycle policy
        router: Router handle, used for the current route

    Returns:
        The destination path
    """
    if config.redirect_to_home_on_logout:
        return HOME_PATH

    if config.preserve_current_route and router is not None:
        current = router.current_route
        if current.path != HOME_PATH:
            return f"{LOGIN_PATH}?redirect={quote(current.full_path, safe=_URI_COMPONENT_SAFE)}"

    return LOGIN_PATH


async def navigate(router: Optional[IRouter], platform: Optional[IPlatformAccess], path: str) -> bool:
    """
    Navigate with the router, falling back to hard navigation.

    Returns:
        True if the router accepted the navigation
    """
    if router is not None:
        try:
            await router.push(path)
            return True
        except Exception as e:
            logger.warning(f"Router navigation to {path} failed, using hard navigation: {e}")
    else:
        logger.debug("Router not available, using hard navigation")

    if platform is not None:
        try:
            platform.hard_navigate(path)
        except Exception as e:
            logger.error(f"Hard navigation to {path} failed: {e}")
    else:
        logger.error(f"No platform available to navigate to {path}")
    return False
