#!/usr/bin/env python3
"""
Tests for the markup and script rewriters
"""
import unittest
from urllib.parse import quote, urljoin

from bs4 import BeautifulSoup

from frame_proxy.markup import (
    RewriteContext,
    resolve_reference,
    rewrite_css,
    rewrite_html,
    rewrite_meta_refresh,
    rewrite_srcset,
)
from frame_proxy.scripts import rewrite_script

PAGE = 'https://ex.com/a/b'
SHIM = "window.__test_shim = true;"


class TestResolution(unittest.TestCase):
    """Reference resolution against the page base"""

    def setUp(self):
        self.ctx = RewriteContext.from_url(PAGE)

    def test_context_fields(self):
        self.assertEqual(self.ctx.base_origin, 'https://ex.com')
        self.assertEqual(self.ctx.base_path, 'https://ex.com/a/')

    def test_matches_standard_resolution(self):
        """Relative forms resolve exactly as urljoin does"""
        for ref in ('/logo.png', 'logo.png', '../up.css', './x/y.js', '?q=1', '//cdn.ex.org/lib.js',
                    'img/a b.png'):
            self.assertEqual(resolve_reference(ref, self.ctx), urljoin(PAGE, ref), ref)

    def test_untouched_forms(self):
        """Absolute, data:, blob:, javascript:, fragments and proxy paths stay as they are"""
        for ref in ('https://other.com/x', 'http://ex.com/y', 'data:image/png;base64,AAAA',
                    'blob:https://ex.com/1234', 'javascript:void(0)', '#top', 'mailto:a@b.c',
                    '/proxy?url=https%3A%2F%2Fex.com', '/media?url=x'):
            self.assertEqual(resolve_reference(ref, self.ctx), ref, ref)

    def test_empty_reference_is_the_page(self):
        """Test that an empty reference resolves to the page itself, not the origin root"""
        self.assertEqual(resolve_reference('', self.ctx), urljoin(PAGE, ''))
        self.assertEqual(resolve_reference('', self.ctx), PAGE)

    def test_css_empty_url_untouched(self):
        self.assertEqual(rewrite_css("div { background: url('') }", self.ctx), "div { background: url('') }")

    def test_srcset_keeps_descriptors(self):
        result = rewrite_srcset('small.png 1x, /large.png 2x', self.ctx)
        self.assertEqual(result, 'https://ex.com/a/small.png 1x, https://ex.com/large.png 2x')

    def test_srcset_keeps_data_urls_whole(self):
        result = rewrite_srcset('data:image/png;base64,AA,BB 1x, b.png 480w', self.ctx)
        self.assertEqual(result, 'data:image/png;base64,AA,BB 1x, https://ex.com/a/b.png 480w')

    def test_css_urls_and_imports(self):
        css = "body { background: url('/bg.png') } .x { background: url(img/x.png) } @import \"theme.css\";"
        result = rewrite_css(css, self.ctx)
        self.assertIn("url('https://ex.com/bg.png')", result)
        self.assertIn("url(https://ex.com/a/img/x.png)", result)
        self.assertIn('@import "https://ex.com/a/theme.css"', result)

    def test_css_leaves_data_urls(self):
        css = 'div { background: url("data:image/svg+xml;utf8,<svg></svg>") }'
        self.assertEqual(rewrite_css(css, self.ctx), css)

    def test_meta_refresh(self):
        self.assertEqual(rewrite_meta_refresh('5; url=/next', self.ctx), '5; url=https://ex.com/next')
        self.assertEqual(rewrite_meta_refresh("0;URL='later.html'", self.ctx), "0;URL='https://ex.com/a/later.html'")
        self.assertEqual(rewrite_meta_refresh('30', self.ctx), '30')
        self.assertEqual(rewrite_meta_refresh('1; url=https://x.org/', self.ctx), '1; url=https://x.org/')


class TestMarkupRewriter(unittest.TestCase):
    """Whole-document HTML rewriting"""

    def rewrite(self, html, page=PAGE):
        return rewrite_html(html, page, SHIM)

    def test_root_relative_image(self):
        out = self.rewrite('<html><body><img src="/logo.png"></body></html>')
        self.assertIn('src="https://ex.com/logo.png"', out)

    def test_document_relative_image(self):
        out = self.rewrite('<html><body><img src="logo.png"></body></html>')
        self.assertIn('src="https://ex.com/a/logo.png"', out)

    def test_all_url_attributes(self):
        html = '''<html><head><link rel="stylesheet" href="s.css"></head><body>
        <a href="/about">About</a>
        <form action="search"><input name="q"></form>
        <img data-src="lazy.jpg" srcset="a.png 1x, b.png 2x">
        <div style="background-image: url(bg.jpg)"></div>
        <style>.hero { background: url("/hero.jpg") }</style>
        <meta http-equiv="refresh" content="10; url=/moved">
        </body></html>'''
        soup = BeautifulSoup(self.rewrite(html), 'html.parser')

        self.assertEqual(soup.find('link')['href'], 'https://ex.com/a/s.css')
        self.assertEqual(soup.find('a')['href'], 'https://ex.com/about')
        self.assertEqual(soup.find('form')['action'], 'https://ex.com/a/search')
        self.assertEqual(soup.find('img')['data-src'], 'https://ex.com/a/lazy.jpg')
        self.assertEqual(soup.find('img')['srcset'], 'https://ex.com/a/a.png 1x, https://ex.com/a/b.png 2x')
        self.assertIn('url(https://ex.com/a/bg.jpg)', soup.find('div')['style'])
        self.assertIn('url("https://ex.com/hero.jpg")', soup.find('style').string)
        self.assertEqual(soup.find('meta')['content'], '10; url=https://ex.com/moved')

    def test_leaves_special_references(self):
        html = ('<body><a href="#top">t</a><a href="javascript:void(0)">j</a>'
                '<img src="data:image/gif;base64,R0lGOD"><a href="https://other.org/">o</a></body>')
        soup = BeautifulSoup(self.rewrite(html), 'html.parser')
        hrefs = [a['href'] for a in soup.find_all('a')]
        self.assertEqual(hrefs, ['#top', 'javascript:void(0)', 'https://other.org/'])
        self.assertEqual(soup.find('img')['src'], 'data:image/gif;base64,R0lGOD')

    def test_empty_link_and_action_name_the_page(self):
        """Test that empty href/action resolve to the page URL while an empty src is left alone"""
        html = '<body><a href="">self</a><form action=""><button formaction="">go</button></form><img src=""></body>'
        soup = BeautifulSoup(self.rewrite(html), 'html.parser')
        self.assertEqual(soup.find('a')['href'], PAGE)
        self.assertEqual(soup.find('form')['action'], PAGE)
        self.assertEqual(soup.find('button')['formaction'], PAGE)
        self.assertEqual(soup.find('img')['src'], '')

    def test_injected_base_not_mistaken_for_page_base(self):
        """Test that a second pass resolves against the page, not the injected origin base"""
        once = self.rewrite('<html><head></head><body><a href="">self</a></body></html>')
        twice = self.rewrite(once + '<a href="rel.html">late</a>')
        soup = BeautifulSoup(twice, 'html.parser')
        self.assertEqual([a['href'] for a in soup.find_all('a')], [PAGE, 'https://ex.com/a/rel.html'])

    def test_protocol_relative_gets_page_scheme(self):
        out = self.rewrite('<body><script src="//cdn.example.net/lib.js"></script></body>')
        self.assertIn('src="https://cdn.example.net/lib.js"', out)

    def test_base_tag_inserted(self):
        soup = BeautifulSoup(self.rewrite('<html><head><title>x</title></head><body></body></html>'), 'html.parser')
        base = soup.head.find('base')
        self.assertIsNotNone(base)
        self.assertEqual(base['href'], 'https://ex.com/')
        self.assertEqual(base['data-frame-proxy'], 'base')
        self.assertIs(soup.head.contents[0], base)

    def test_existing_base_is_respected(self):
        html = '<html><head><base href="/sub/"></head><body><img src="x.png"></body></html>'
        soup = BeautifulSoup(self.rewrite(html), 'html.parser')
        self.assertEqual(len(soup.find_all('base')), 1)
        self.assertEqual(soup.find('base')['href'], 'https://ex.com/sub/')
        self.assertEqual(soup.find('img')['src'], 'https://ex.com/sub/x.png')

    def test_shim_is_last_in_body(self):
        soup = BeautifulSoup(self.rewrite('<html><body><p>hi</p></body></html>'), 'html.parser')
        last = soup.body.find_all(True, recursive=False)[-1]
        self.assertEqual(last.name, 'script')
        self.assertEqual(last['data-frame-proxy'], 'shim')
        self.assertEqual(last.string, SHIM)

    def test_body_synthesized_when_missing(self):
        soup = BeautifulSoup(self.rewrite('<html><head><title>t</title></head></html>'), 'html.parser')
        self.assertIsNotNone(soup.body)
        self.assertIsNotNone(soup.body.find('script', attrs={'data-frame-proxy': 'shim'}))

    def test_fragment_without_html_element(self):
        out = self.rewrite('<p>bare <a href="x">fragment</a></p>')
        self.assertIn('href="https://ex.com/a/x"', out)
        self.assertIn('data-frame-proxy="shim"', out)

    def test_doctype_stays_first(self):
        out = self.rewrite('<!DOCTYPE html><p>no head</p>')
        self.assertTrue(out.startswith('<!DOCTYPE html>'))

    def test_idempotent(self):
        """Rewriting the output again with the same base changes nothing"""
        html = '''<!DOCTYPE html>
<html><head><title>Idem</title><meta http-equiv="refresh" content="3; url=next.html"></head>
<body>
<img src="/logo.png" srcset="a.png 1x, /b.png 2x" data-src="lazy.png">
<a href="page.html?x=1&amp;y=2">link</a> <a href="//cdn.org/z">cdn</a>
<div style="background: url('bg.png')">styled</div>
<style>p { background: url(p.png) }</style>
<script>var s = "<b>" + 1 < 2;</script>
</body></html>'''
        once = self.rewrite(html)
        twice = self.rewrite(once)
        self.assertEqual(once, twice)
        self.assertEqual(once.count('data-frame-proxy="shim"'), 1)
        self.assertEqual(once.count('<base'), 1)

    def test_bytes_input_uses_declared_charset(self):
        html = '<html><head><meta charset="iso-8859-1"></head><body><p>caf\xe9</p></body></html>'.encode('iso-8859-1')
        out = rewrite_html(html, PAGE, SHIM, encoding='iso-8859-1')
        self.assertIn('caf\xe9', out)

    def test_inline_scripts_untouched(self):
        js = 'fetch("/api/data").then(r => r.json());'
        out = self.rewrite(f'<body><script>{js}</script></body>')
        self.assertIn(js, out)


class TestScriptRewriter(unittest.TestCase):
    """Static fetch/XHR call site rewriting"""

    ORIGIN = 'http://proxy.local'
    SCRIPT_URL = 'https://ex.com/static/app.js'

    def rewrite(self, js):
        return rewrite_script(js, self.SCRIPT_URL, self.ORIGIN)

    def routed(self, url):
        return f"{self.ORIGIN}/proxy?url={quote(url, safe='')}"

    def test_absolute_fetch(self):
        out = self.rewrite('fetch("https://api.ex.com/v1/items")')
        self.assertEqual(out, f'fetch("{self.routed("https://api.ex.com/v1/items")}")')

    def test_root_relative_fetch(self):
        out = self.rewrite("fetch('/api/items', {method: 'POST'})")
        self.assertEqual(out, f"fetch('{self.routed('https://ex.com/api/items')}', {{method: 'POST'}})")

    def test_protocol_relative_fetch(self):
        out = self.rewrite('fetch(`//cdn.ex.com/data.json`)')
        self.assertEqual(out, f'fetch(`{self.routed("https://cdn.ex.com/data.json")}`)')

    def test_xhr_open(self):
        out = self.rewrite('xhr.open("GET", "http://ex.com/feed.xml", true);')
        self.assertEqual(out, f'xhr.open("GET", "{self.routed("http://ex.com/feed.xml")}", true);')

    def test_xhr_open_relative(self):
        out = self.rewrite("req.open('post', '/submit')")
        self.assertEqual(out, f"req.open('post', '{self.routed('https://ex.com/submit')}')")

    def test_dynamic_urls_untouched(self):
        for js in ('fetch(url)', 'fetch(base + "/x")', 'fetch(`${host}/api`)', 'fetch("api/relative")',
                   'fetch("data:text/plain,hi")'):
            self.assertEqual(self.rewrite(js), js, js)

    def test_already_proxied_untouched(self):
        once = self.rewrite('fetch("https://api.ex.com/x"); fetch("/proxy?url=abc")')
        self.assertEqual(self.rewrite(once), once)
        self.assertIn('fetch("/proxy?url=abc")', once)


if __name__ == '__main__':
    unittest.main(verbosity=2)
