from commentary.classify import classify_links, is_commentary

from conftest import make_link


def test_category_and_type_mark_commentary():
    assert is_commentary(make_link("Rashi on Berakhot 2a:1:1", category="Commentary"))
    assert is_commentary(make_link("Tosafot on Berakhot 2a:1:1", category="Talmud", type="commentary"))
    assert not is_commentary(make_link("Deuteronomy 6:7", category="Tanakh"))


def test_title_heuristic():
    link = make_link("Steinsaltz on Berakhot 2a:1", category="Talmud", title="Steinsaltz on Berakhot")
    assert is_commentary(link)
    assert not is_commentary(link, strict=True)


def test_title_heuristic_matches_substring():
    # case-sensitive substring: "Responsa" contains "on"
    link = make_link("Teshuvot 12", category="Responsa", title="Responsa")
    assert is_commentary(link)
    assert not is_commentary(make_link("Mishnah Berakhot 1:1", category="Mishnah", title="Mishnah ON"))


def test_partition_is_total_and_ordered():
    links = [
        make_link("Rashi on Berakhot 2a:1:1"),
        make_link("Deuteronomy 6:7", category="Tanakh"),
        make_link("Tosafot on Berakhot 2a:1:1", category="Talmud", type="commentary"),
        make_link("Mishneh Torah, Reading the Shema 1:9", category="Halakhah"),
    ]

    partition = classify_links(links)

    assert [l.target_ref for l in partition.commentary] == [
        "Rashi on Berakhot 2a:1:1",
        "Tosafot on Berakhot 2a:1:1",
    ]
    assert [l.target_ref for l in partition.connection] == [
        "Deuteronomy 6:7",
        "Mishneh Torah, Reading the Shema 1:9",
    ]
    assert len(partition.commentary) + len(partition.connection) == len(links)


def test_empty_links():
    partition = classify_links([])
    assert partition.commentary == [] and partition.connection == []
