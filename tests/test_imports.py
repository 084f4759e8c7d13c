def test_import_talegraph_package() -> None:
    import importlib

    module = importlib.import_module("talegraph")
    assert module is not None


def test_import_services_without_storage_cycle() -> None:
    from talegraph.services import Navigator, SaveManager, StoryEditorService
    from talegraph.data.repositories import create_data_service

    assert Navigator and SaveManager and StoryEditorService and create_data_service
