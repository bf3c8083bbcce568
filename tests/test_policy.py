import unittest

from crawlfrontier.frontier.work_item import WorkItem
from crawlfrontier.net.fetcher import FetchResult
from crawlfrontier.policy import Discovery, ScopePolicy
from crawlfrontier.url_tools import canonicalize


def admit(policy: ScopePolicy, url: str) -> bool:
    return policy.should_admit(canonicalize(url), Discovery(url=url))


class ScopePolicyTests(unittest.TestCase):
    def test_allowed_domains_include_subdomains(self) -> None:
        policy = ScopePolicy(allowed_domains=["example.com"])

        self.assertTrue(admit(policy, "http://example.com/"))
        self.assertTrue(admit(policy, "http://docs.example.com/guide"))
        self.assertFalse(admit(policy, "http://notexample.com/"))
        self.assertFalse(admit(policy, "http://example.org/"))
        self.assertEqual(2, policy.stats["domain_rejected"])

    def test_empty_allowlist_admits_any_host(self) -> None:
        policy = ScopePolicy()

        self.assertTrue(admit(policy, "http://anything.net/page"))

    def test_default_extension_filter(self) -> None:
        policy = ScopePolicy()

        self.assertFalse(admit(policy, "http://example.com/logo.PNG"))
        self.assertFalse(admit(policy, "http://example.com/files/archive.tar.gz"))
        self.assertTrue(admit(policy, "http://example.com/article.html"))
        self.assertTrue(admit(policy, "http://example.com/dir.v2/"))

    def test_deny_patterns_override_allow_patterns(self) -> None:
        policy = ScopePolicy(allow_patterns=[r"/docs/"], deny_patterns=[r"/docs/private"])

        self.assertTrue(admit(policy, "http://example.com/docs/intro"))
        self.assertFalse(admit(policy, "http://example.com/docs/private/x"))
        self.assertFalse(admit(policy, "http://example.com/blog/"))
        self.assertEqual(2, policy.stats["pattern_rejected"])

    def test_on_dequeue_extracts_links_from_html(self) -> None:
        policy = ScopePolicy()
        item = WorkItem(url="http://example.com/index", doc_id=1)
        result = FetchResult(
            url=item.url,
            status_code=200,
            headers={"Content-Type": "text/html; charset=utf-8"},
            body=b'<a href="/a">First</a><a href="/b"><img src="x.png"></a>',
        )

        discoveries = list(policy.on_dequeue(item, result))

        self.assertEqual(["http://example.com/a", "http://example.com/b"], [d.url for d in discoveries])
        self.assertEqual({"anchor": "First"}, discoveries[0].attributes)
        self.assertEqual({}, discoveries[1].attributes)
        self.assertTrue(all(d.tag == "a" and d.parent is item for d in discoveries))

    def test_on_dequeue_ignores_failures_and_non_html(self) -> None:
        policy = ScopePolicy()
        item = WorkItem(url="http://example.com/", doc_id=1)
        body = b'<a href="/a">A</a>'

        not_found = FetchResult(url=item.url, status_code=404, body=body)
        image = FetchResult(url=item.url, status_code=200, headers={"content-type": "image/png"}, body=body)

        self.assertEqual([], list(policy.on_dequeue(item, not_found)))
        self.assertEqual([], list(policy.on_dequeue(item, image)))


if __name__ == "__main__":
    unittest.main()
