from conftest import tab

from tabkeep.tabs import closable_tabs, filter_tabs, is_empty_set, is_new_tab_url, normalize_tab_url


def test_new_tab_urls_are_recognised_after_normalisation():
    assert is_new_tab_url("about:newtab")
    assert is_new_tab_url("About:Home/")
    assert is_new_tab_url("chrome://newtab/")
    assert is_new_tab_url("")
    assert not is_new_tab_url("https://example.com/")
    assert normalize_tab_url("HTTPS://A.example/") == "https://a.example"


def test_empty_set_is_no_tabs_or_one_blank_tab():
    assert is_empty_set([])
    assert is_empty_set([tab(1, "about:newtab")])
    assert is_empty_set([tab(1, "chrome://newtab/")])
    assert not is_empty_set([tab(1, "about:newtab"), tab(2, "https://a.example/")])
    # Two blank tabs are not the short-circuit case; filtering leaves nothing anyway.
    two_blank = [tab(1, "about:newtab"), tab(2, "about:blank")]
    assert not is_empty_set(two_blank)
    assert filter_tabs(two_blank) == []


def test_empty_set_counts_pinned_tabs():
    # A lone pinned page is not "empty"; filtering may still drop it later.
    assert not is_empty_set([tab(1, "https://a.example/", pinned=True)])


def test_filter_drops_new_tabs_and_pinned_by_default():
    tabs = [
        tab(1, "https://a.example/"),
        tab(2, "about:newtab"),
        tab(3, "https://b.example/", pinned=True),
        tab(4, "https://c.example/"),
    ]
    assert [t.id for t in filter_tabs(tabs)] == [1, 4]
    assert [t.id for t in filter_tabs(tabs, save_pinned=True)] == [1, 3, 4]


def test_filter_keeps_duplicate_urls_in_order():
    tabs = [tab(1, "https://a.example/"), tab(2, "https://a.example/"), tab(3, "https://b.example/")]
    assert [t.id for t in filter_tabs(tabs)] == [1, 2, 3]


def test_closable_tabs_never_include_new_tab_pages():
    tabs = [tab(1, "about:newtab"), tab(2, "https://a.example/", pinned=True), tab(3, "https://b.example/")]
    assert [t.id for t in closable_tabs(tabs)] == [3]
    assert [t.id for t in closable_tabs(tabs, close_pinned=True)] == [2, 3]
