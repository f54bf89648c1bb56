# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Slack workspace linking service.

Links host-application accounts to Slack workspaces through OAuth, relays
inbound Slack callbacks into the host and posts messages back to Slack on
the account owner's behalf.
"""

__version__ = "0.1.0"
