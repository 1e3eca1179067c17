"""
SchoolContext scenario tests

Each test opens several short-lived contexts against one freshly named store,
the same way an application would: write in one context, verify in another.
"""

from datetime import date

import pytest

from schoolstore import (
    ClassRoster, ContextClosedError, Member, create_school_context, drop_store,
    open_school_context
)


def musterfamily_roster() -> ClassRoster:
    return ClassRoster(
        name="6ABIF_6AKIF",
        members=[
            Member(first_name="Max", last_name="Mustermann", birth_date=date(1990, 1, 1)),
            Member(first_name="Eva", last_name="Musterfrau", birth_date=date(1991, 1, 1)),
            Member(first_name="Fritz", last_name="Musterkind", birth_date=date(1980, 1, 1)),
            Member(first_name="Franz", last_name="Huber", birth_date=date(1999, 7, 10)),
        ]
    )


class TestSchoolContextScenarios:
    """CRUD scenarios across context lifecycles"""

    @pytest.mark.asyncio
    async def test_add_roster_persists_roster(self, store_name):
        async with open_school_context(store_name) as context:
            roster = ClassRoster(name="6ABIF_6AKIF")
            assert roster.id == 0
            context.rosters.add(roster)
            await context.commit()
            assert roster.id != 0

        async with open_school_context(store_name) as verify:
            assert await verify.rosters.count() == 1
            roster = await verify.rosters.first()
            assert roster.name == "6ABIF_6AKIF"

    @pytest.mark.asyncio
    async def test_query_members_ordered_by_birth_date_returns_eldest(self, store_name):
        async with open_school_context(store_name) as context:
            roster = musterfamily_roster()
            context.rosters.add(roster)
            await context.commit()
            assert roster.id != 0

        async with open_school_context(store_name) as query_context:
            assert await query_context.rosters.count() == 1
            assert await query_context.members.count() == 4
            eldest = await query_context.members.order_by("birth_date").first()
            assert eldest.last_name == "Musterkind"

    @pytest.mark.asyncio
    async def test_rename_roster_is_visible_to_later_context(self, store_name):
        async with open_school_context(store_name) as context:
            context.rosters.add(ClassRoster(name="5ABIF_5AKIF"))
            await context.commit()

        async with open_school_context(store_name) as update_context:
            roster = await update_context.rosters.first()
            roster.name = "6ABIF_6AKIF"
            assert await update_context.commit() == 1

        async with open_school_context(store_name) as verify:
            roster = await verify.rosters.first()
            assert roster.name == "6ABIF_6AKIF"

    @pytest.mark.asyncio
    async def test_delete_roster_selected_by_single(self, store_name):
        async with open_school_context(store_name) as context:
            roster = ClassRoster(name="6ABIF_6AKIF")
            context.rosters.add(roster)
            context.rosters.add(ClassRoster(name="5ABIF_5AKIF"))
            await context.commit()
            assert roster.id != 0

        async with open_school_context(store_name) as delete_context:
            roster = await delete_context.rosters.single(lambda r: r.name == "5ABIF_5AKIF")
            delete_context.rosters.remove(roster)
            await delete_context.commit()

        async with open_school_context(store_name) as verify:
            assert await verify.rosters.count() == 1
            roster = await verify.rosters.first()
            assert roster.name == "6ABIF_6AKIF"

    @pytest.mark.asyncio
    async def test_sorted_query_is_reevaluated_after_each_delete(self, store_name, five_pupils_roster):
        async with open_school_context(store_name) as context:
            context.rosters.add(five_pupils_roster())
            await context.commit()

        removed = []
        async with open_school_context(store_name) as sort_and_delete:
            pupils = sort_and_delete.members.order_by("last_name")
            for _ in range(5):
                pupil = await pupils.first()
                sort_and_delete.remove(pupil)
                await sort_and_delete.commit()
                removed.append(pupil.last_name)

            assert not await pupils.any()

        assert removed == ["First", "Fith", "Fourth", "Second", "Third"]

    @pytest.mark.asyncio
    async def test_delete_one_of_five_members_leaves_four(self, store_name, five_pupils_roster):
        async with open_school_context(store_name) as context:
            context.rosters.add(five_pupils_roster())
            await context.commit()

        async with open_school_context(store_name) as delete_context:
            pupil = await delete_context.members.single(lambda p: p.last_name == "Third")
            delete_context.members.remove(pupil)
            await delete_context.commit()

        async with open_school_context(store_name) as verify:
            assert await verify.members.count() == 4
            assert await verify.members.filter_by(last_name="Third").count() == 0

    @pytest.mark.asyncio
    async def test_delete_member_by_predicate_leaves_one(self, store_name):
        async with open_school_context(store_name) as context:
            context.rosters.add(ClassRoster(
                name="4AHIF",
                members=[
                    Member(first_name="Anna", last_name="Berger", birth_date=date(2005, 2, 3)),
                    Member(first_name="Bernd", last_name="Gruber", birth_date=date(2005, 6, 9)),
                ]
            ))
            await context.commit()

        async with open_school_context(store_name) as delete_context:
            pupil = await delete_context.members.where(lambda p: p.last_name == "Gruber").single()
            delete_context.remove(pupil)
            await delete_context.commit()

        async with open_school_context(store_name) as verify:
            assert await verify.members.count() == 1
            remaining = await verify.members.first()
            assert remaining.last_name == "Berger"


class TestSchoolContextProperties:
    """Identity, round-trip and cascade guarantees"""

    @pytest.mark.asyncio
    async def test_identities_are_nonzero_and_unique_after_commit(self, store_name):
        async with open_school_context(store_name) as context:
            first = musterfamily_roster()
            second = ClassRoster(name="7AHIF")
            context.rosters.add(first)
            context.rosters.add(second)
            assert await context.commit() == 6

            assert first.id != 0 and second.id != 0
            assert first.id != second.id
            member_ids = [member.id for member in first.members]
            assert 0 not in member_ids
            assert len(set(member_ids)) == 4
            assert all(member.roster_id == first.id for member in first.members)

    @pytest.mark.asyncio
    async def test_round_trip_preserves_column_values(self, store_name):
        async with open_school_context(store_name) as context:
            roster = musterfamily_roster()
            context.rosters.add(roster)
            await context.commit()
            written = {m.last_name: m.column_values() for m in roster.members}
            roster_id = roster.id

        async with open_school_context(store_name) as reload_context:
            reloaded = await reload_context.rosters.filter_by(name="6ABIF_6AKIF").single()
            assert reloaded.id == roster_id
            assert [m.last_name for m in reloaded.members] == [
                "Mustermann", "Musterfrau", "Musterkind", "Huber"
            ]
            for member in reloaded.members:
                assert member.column_values() == written[member.last_name]

    @pytest.mark.asyncio
    async def test_delete_roster_cascades_to_its_members(self, store_name):
        async with open_school_context(store_name) as context:
            context.rosters.add(musterfamily_roster())
            context.rosters.add(ClassRoster(
                name="7AHIF",
                members=[Member(first_name="Lena", last_name="Wolf", birth_date=date(2004, 5, 5))]
            ))
            await context.commit()

        async with open_school_context(store_name) as delete_context:
            roster = await delete_context.rosters.single(lambda r: r.name == "6ABIF_6AKIF")
            assert len(roster.members) == 4
            delete_context.remove(roster)
            assert await delete_context.commit() == 5
            assert delete_context.tracked_entities() == []

        async with open_school_context(store_name) as verify:
            assert await verify.members.count() == 1
            assert (await verify.members.first()).last_name == "Wolf"

    @pytest.mark.asyncio
    async def test_ties_keep_store_order(self, store_name):
        async with open_school_context(store_name) as context:
            context.rosters.add(ClassRoster(
                name="Twins",
                members=[
                    Member(first_name="Paul", last_name="Zwilling", birth_date=date(2001, 1, 1)),
                    Member(first_name="Paula", last_name="Zwilling", birth_date=date(2001, 1, 1)),
                ]
            ))
            await context.commit()

        async with open_school_context(store_name) as query_context:
            first = await query_context.members.order_by("birth_date").first()
            assert first.first_name == "Paul"


class TestSchoolContextLifecycle:

    def test_sync_with_block_closes_context(self, store_name):
        with create_school_context(store_name) as context:
            assert not context.is_closed
        assert context.is_closed
        with pytest.raises(ContextClosedError):
            context.rosters

    @pytest.mark.asyncio
    async def test_closing_discards_pending_changes(self, store_name):
        async with open_school_context(store_name) as context:
            context.rosters.add(ClassRoster(name="never committed"))

        async with open_school_context(store_name) as verify:
            assert await verify.rosters.count() == 0

    @pytest.mark.asyncio
    async def test_context_is_closed_when_block_raises(self, store_name):
        with pytest.raises(RuntimeError):
            async with open_school_context(store_name) as context:
                raise RuntimeError("boom")
        assert context.is_closed

    @pytest.mark.asyncio
    async def test_contexts_on_different_stores_are_isolated(self, store_name):
        other_store = store_name + "-other"
        async with open_school_context(store_name) as context:
            context.rosters.add(ClassRoster(name="6ABIF_6AKIF"))
            await context.commit()

        try:
            async with open_school_context(other_store) as other:
                assert await other.rosters.count() == 0
        finally:
            drop_store(other_store)
