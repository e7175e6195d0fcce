import pytest

from errors import ValidationError
from tools import AUTHENTICATE_TOOL, TOOL_DEFINITIONS, ToolCatalog, ToolName, validate_arguments
from upstream import RezoomexClient


@pytest.fixture
def catalog():
    return ToolCatalog()


def test_catalog_covers_every_tool_name(catalog):
    assert {tool.name for tool in catalog.list()} == {name.value for name in ToolName}
    assert len(catalog) == len(TOOL_DEFINITIONS)


def test_listed_tools_exclude_authenticate(catalog):
    listed = catalog.listed_tools()

    assert len(listed) == len(catalog) - 1
    assert AUTHENTICATE_TOOL.value not in {tool.name for tool in listed}


def test_lookup(catalog):
    assert catalog.lookup("list_user_stories").name == "list_user_stories"
    assert catalog.lookup("rm_rf") is None


def test_every_tool_has_an_upstream_operation():
    operations = RezoomexClient("tok", http_client=None, base_url="http://x").operations
    tool_names = {name.value for name in ToolName if name is not AUTHENTICATE_TOOL}

    assert tool_names <= operations


def test_parse_tool_name():
    assert ToolName.parse("get_user_info") is ToolName.GET_USER_INFO
    assert ToolName.parse("nope") is None


def test_missing_required_fields_are_all_reported(catalog):
    tool = catalog.lookup("list_user_stories")

    with pytest.raises(ValidationError) as excinfo:
        validate_arguments(tool, {})

    assert excinfo.value.errors == [
        "Missing required field: project_id",
        "Missing required field: persona_id",
    ]
    assert excinfo.value.message.startswith("Validation errors: ")


def test_null_counts_as_missing(catalog):
    with pytest.raises(ValidationError, match="project_id"):
        validate_arguments(catalog.lookup("get_product_info"), {"project_id": None})


def test_type_mismatch(catalog):
    tool = catalog.lookup("get_story_range")

    with pytest.raises(ValidationError) as excinfo:
        validate_arguments(tool, {
            "start_number": "1",
            "end_number": True,
            "project_id": "39SQ",
            "persona_id": 5,
        })

    assert excinfo.value.errors == [
        "Field start_number must be an integer",
        "Field end_number must be an integer",
        "Field persona_id must be a string",
    ]


def test_minimum_bound(catalog):
    tool = catalog.lookup("get_story_range")

    with pytest.raises(ValidationError, match="start_number must be at least 1"):
        validate_arguments(tool, {
            "start_number": 0,
            "end_number": 3,
            "project_id": "39SQ",
            "persona_id": "39SQ-P-001",
        })


def test_valid_arguments_pass(catalog):
    validate_arguments(catalog.lookup("get_story_range"), {
        "start_number": 1,
        "end_number": 3,
        "project_id": "39SQ",
        "persona_id": "39SQ-P-001",
    })
    validate_arguments(catalog.lookup("get_user_info"), {})


def test_arguments_must_be_an_object(catalog):
    with pytest.raises(ValidationError):
        validate_arguments(catalog.lookup("get_user_info"), ["not", "a", "dict"])
