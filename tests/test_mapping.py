import pytest

from forms.mapping import (
    CHECKBOX_GROUPS,
    ENTITY_GROUP_BY_DOCUMENT,
    ENTITY_TYPE_MAPPING,
    UNIFIED_FIELDS,
    UnifiedFieldMapping,
    resolve_entity_type,
)
from forms.schema import DEFAULT_REGISTRY, DocumentType

D1919 = DocumentType.SBA_1919
D413 = DocumentType.SBA_413


def test_every_mapped_field_exists_in_the_schema():
    for mapping in UNIFIED_FIELDS:
        for doc in DocumentType:
            target = mapping.field_for(doc)
            if target is not None:
                assert DEFAULT_REGISTRY.has_field(doc, target), (mapping.unified_name, doc, target)
    for doc, groups in CHECKBOX_GROUPS.items():
        for group in groups.values():
            for member in group.members:
                assert DEFAULT_REGISTRY.has_field(doc, member), (group.name, member)


def test_unified_mapping_needs_at_least_one_side():
    with pytest.raises(ValueError):
        UnifiedFieldMapping("orphan", "Who?")


@pytest.mark.parametrize("value,expected", [
    ("LLC", "LLC"),
    ("llc", "LLC"),
    ("s corp", "S-Corp"),
    ("Corporation", "C-Corp"),
    ("sole proprietorship", "Sole Proprietor"),
    ("Trust", None),
])
def test_resolve_entity_type(value, expected):
    assert resolve_entity_type(value) == expected


def test_group_resolve_accepts_label_field_name_and_alias():
    group = CHECKBOX_GROUPS[D413]["loanProgram"]
    assert group.resolve("7(a) loan") == "loanProgram7a"
    assert group.resolve("loanProgram504") == "loanProgram504"
    assert group.resolve("WOSB") == "loanProgramWOSB"
    assert group.resolve("microloan") is None


async def test_apply_unified_writes_both_forms(forms, mapper):
    await forms.start("app-1")
    results = mapper.apply_unified("app-1", "businessPhone", "555-0100")

    assert results["SBA_1919"].success
    assert results["SBA_413"].success
    state = forms.get("app-1")
    assert state.entry(D1919).all_fields["busphone"] == "555-0100"
    assert state.entry(D413).all_fields["businessPhone"] == "555-0100"


async def test_apply_unified_one_sided_mapping(forms, mapper):
    await forms.start("app-1")
    results = mapper.apply_unified("app-1", "signatureDate", "2026-01-02")
    assert results["SBA_1919"] is None
    assert results["SBA_413"].success
    assert forms.get("app-1").entry(D413).all_fields["date"] == "2026-01-02"


async def test_apply_unified_unknown_name(forms, mapper):
    await forms.start("app-1")
    assert mapper.apply_unified("app-1", "favouriteColour", "blue") == {"SBA_1919": None, "SBA_413": None}
    assert not forms.get("app-1").dirty


async def test_entity_group_is_exclusive_on_both_forms(forms, mapper):
    await forms.start("app-1")
    mapper.apply_entity_group("app-1", "Partnership")
    mapper.apply_entity_group("app-1", "LLC")

    state = forms.get("app-1")
    for doc in DocumentType:
        group = mapper.group_of(doc, ENTITY_GROUP_BY_DOCUMENT[doc])
        ticked = [m for m in group.members if state.entry(doc).all_fields[m] is True]
        assert ticked == [ENTITY_TYPE_MAPPING["LLC"][doc.value]]


async def test_entity_group_unknown_option(forms, mapper):
    await forms.start("app-1")
    assert mapper.apply_entity_group("app-1", "Trust") == {"SBA_1919": None, "SBA_413": None}


async def test_select_checkbox_clears_siblings_in_exclusive_group(forms, mapper):
    await forms.start("app-1")
    mapper.select_checkbox("app-1", D1919, "veteranStatus", "Veteran")
    field_name, result, cleared = mapper.select_checkbox("app-1", D1919, "veteranStatus", "Non-Veteran")

    assert field_name == "statNonVet"
    assert result.success
    assert "statVet" in cleared
    fields = forms.get("app-1").entry(D1919).all_fields
    assert fields["statNonVet"] is True
    assert fields["statVet"] is False


async def test_select_checkbox_keeps_siblings_in_multi_select_group(forms, mapper):
    await forms.start("app-1")
    mapper.select_checkbox("app-1", D1919, "race", "Asian")
    _, _, cleared = mapper.select_checkbox("app-1", D1919, "race", "White")

    assert cleared == []
    fields = forms.get("app-1").entry(D1919).all_fields
    assert fields["raceAsian"] is True
    assert fields["raceWhite"] is True


async def test_select_checkbox_unknown_group_or_value(forms, mapper):
    await forms.start("app-1")
    assert mapper.select_checkbox("app-1", D1919, "shoeSize", "9") == (None, None, [])
    assert mapper.select_checkbox("app-1", D1919, "sex", "Other") == (None, None, [])


async def test_entity_group_repairs_several_ticked_boxes(forms, mapper):
    await forms.start("app-1")
    for name in ("soleprop", "ccorp", "llc"):
        forms.update_field("app-1", D1919, name, True)
    forms.update_field("app-1", D413, "businessTypeCorporation", True)

    mapper.apply_entity_group("app-1", "Sole Proprietor")

    fields_1919 = forms.get("app-1").entry(D1919).all_fields
    fields_413 = forms.get("app-1").entry(D413).all_fields
    assert [m for m in mapper.group_of(D1919, "entity").members if fields_1919[m]] == ["soleprop"]
    assert [m for m in mapper.group_of(D413, "businessType").members if fields_413[m]] == ["businessTypeSoleProprietor"]


async def test_one_sided_unified_field_leaves_other_form_unchanged(forms, mapper):
    await forms.start("app-1")
    before = dict(forms.get("app-1").entry(D1919).all_fields)
    mapper.apply_unified("app-1", "signatureDate", "2026-10-18")
    assert forms.get("app-1").entry(D1919).all_fields == before
