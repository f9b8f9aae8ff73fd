# =============================================================================
# RTC Session -- Package Logger
# =============================================================================

import logging

logger = logging.getLogger("rtc_session")
