# -*- mode: python; coding: utf-8 -*-
#
# Copyright (C) 2025 Benjamin Thomas Schwertfeger
# All rights reserved.
# https://github.com/btschwertfeger
#

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Timezone-aware current time, the only clock used by the engine."""
    return datetime.now(UTC)
