"""
Tests for stash_client.rest module.
"""

import pytest
from unittest.mock import Mock

from stash_client.rest.query import StashQuery


class TestStashQueryUrls:
    """Tests for URL and parameter building."""

    def test_url(self, connection):
        q = StashQuery(connection)
        assert q.url("projects") == "http://git.example.com/rest/api/1.0/projects"
        assert q.url("/projects/KEY/repos") == "http://git.example.com/rest/api/1.0/projects/KEY/repos"

    def test_custom_api_path(self, connection):
        q = StashQuery(connection, api_path="/rest/branch-utils/1.0/")
        assert q.url("x") == "http://git.example.com/rest/branch-utils/1.0/x"

    def test_get_passes_limit_and_params(self, connection, mock_context):
        q = StashQuery(connection, page_size=25)
        q.get("projects", {"name": "core"})

        mock_context.get_json.assert_called_once_with(
            "http://git.example.com/rest/api/1.0/projects",
            auth=connection.auth,
            params={"limit": "25", "name": "core"},
        )

    def test_get_without_page_size(self, connection, mock_context):
        StashQuery(connection).get("application-properties")
        assert mock_context.get_json.call_args.kwargs["params"] == {}

    def test_get_page_uses_page_check(self, connection, mock_context):
        page = StashQuery(connection, page_size=1).get_page("users")

        assert page == {"values": [], "isLastPage": True}
        mock_context.get_page.assert_called_once_with(
            "http://git.example.com/rest/api/1.0/users",
            auth=connection.auth,
            params={"limit": "1"},
        )
        mock_context.get_json.assert_not_called()


class TestStashQueryPaging:
    """Tests for paged reads."""

    def test_read_all_follows_paging(self, connection, mock_context):
        mock_context.get_page = Mock(side_effect=[
            {"values": [{"id": 1}, {"id": 2}], "isLastPage": False, "nextPageStart": 2},
            {"values": [{"id": 3}], "isLastPage": True},
        ])

        results = StashQuery(connection, page_size=2).read_all("repos")

        assert [r["id"] for r in results] == [1, 2, 3]
        second = mock_context.get_page.call_args_list[1]
        assert second.kwargs["params"] == {"limit": "2", "start": "2"}

    def test_iterate_yields_pages(self, connection, mock_context, sample_users_page):
        last = dict(sample_users_page, isLastPage=True, values=[{"name": "bob"}])
        mock_context.get_page = Mock(side_effect=[sample_users_page, last])

        pages = list(StashQuery(connection, page_size=1).iterate("users"))

        assert pages == [[{"name": "alice", "slug": "alice", "id": 101, "active": True}], [{"name": "bob"}]]

    def test_max_pages(self, connection, mock_context):
        mock_context.get_page = Mock(return_value={
            "values": [{"id": 1}], "isLastPage": False, "nextPageStart": 1,
        })

        pages = list(StashQuery(connection).iterate("repos", max_pages=1))

        assert len(pages) == 1
        assert mock_context.get_page.call_count == 1

    def test_repeated_start_stops(self, connection, mock_context):
        mock_context.get_page = Mock(return_value={
            "values": [{"id": 1}], "isLastPage": False, "nextPageStart": 5,
        })

        results = StashQuery(connection).read_all("repos")

        assert len(results) == 2
        assert mock_context.get_page.call_count == 2

    def test_missing_is_last_page_stops(self, connection, mock_context):
        mock_context.get_page = Mock(return_value={"values": [{"id": 1}]})
        assert StashQuery(connection).read_all("repos") == [{"id": 1}]

    def test_empty_listing(self, connection, mock_context):
        assert StashQuery(connection).read_all("repos") == []
