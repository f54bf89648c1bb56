# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Property-Based Tests for Installation Uniqueness

For any sequence of OAuth grants, the store holds exactly one installation
per (team, Slack user) pair, and each one carries the tokens of the last
grant for that pair.
"""

import asyncio

from hypothesis import given, settings
from hypothesis import strategies as st

from slack_link.installation_store import InMemoryInstallationStore
from slack_link.models import OAuthGrant

team_ids = st.sampled_from(["T0000000001", "T0000000002", "T0000000003"])
user_ids = st.sampled_from(["U0000000001", "U0000000002"])
tokens = st.text(alphabet="abcdef0123456789", min_size=4, max_size=12)


@st.composite
def grant_strategy(draw):
    return OAuthGrant(
        slack_team_id=draw(team_ids),
        slack_team_name="Acme",
        slack_user_id=draw(user_ids),
        bot_token=f"xoxb-{draw(tokens)}",
        user_token=f"xoxp-{draw(tokens)}",
    )


class TestInstallationUniqueness:

    @given(grants=st.lists(grant_strategy(), min_size=1, max_size=20))
    @settings(max_examples=100, deadline=3000)
    def test_one_row_per_team_and_user(self, grants):
        async def run_test():
            store = InMemoryInstallationStore()
            for grant in grants:
                await store.upsert(grant, "owner-1")

            expected_keys = {(g.slack_team_id, g.slack_user_id) for g in grants}
            assert len(store) == len(expected_keys)

            latest = {}
            for grant in grants:
                latest[(grant.slack_team_id, grant.slack_user_id)] = grant

            for row in await store.list_by_owner("owner-1"):
                grant = latest[(row.slack_team_id, row.slack_user_id)]
                assert row.bot_token == grant.bot_token
                assert row.user_token == grant.user_token
                assert row.is_active is True

        asyncio.run(run_test())

    @given(grants=st.lists(grant_strategy(), min_size=1, max_size=20))
    @settings(max_examples=50, deadline=3000)
    def test_concurrent_upserts_keep_uniqueness(self, grants):
        async def run_test():
            store = InMemoryInstallationStore()
            await asyncio.gather(*(store.upsert(grant, "owner-1") for grant in grants))

            assert len(store) == len({(g.slack_team_id, g.slack_user_id) for g in grants})

        asyncio.run(run_test())
