"""
Markup Rewriter

Parses fetched HTML with BeautifulSoup, resolves every URL-bearing attribute,
inline style and <style> block to an absolute URL, makes sure a <base> tag is
present, and appends the Runtime Shim before </body>.

Running the rewriter over its own output changes nothing: absolute URLs and
proxy-internal paths are left alone, and neither the <base> tag nor the shim
is added twice.
"""
import re
from collections import namedtuple
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup, Doctype

from frame_proxy.errors import RewriteFailure

SHIM_MARKER = 'data-frame-proxy'

# Attributes holding a single URL
URL_ATTRIBUTES = ('src', 'href', 'action', 'formaction', 'data-src', 'poster')
# Attributes where an empty value still names the current document
EMPTY_MEANS_DOCUMENT = {'a': 'href', 'area': 'href', 'form': 'action', 'button': 'formaction', 'input': 'formaction'}
# Attributes holding a comma-separated candidate list
SRCSET_ATTRIBUTES = ('srcset', 'data-srcset')

_SCHEME_RE = re.compile(r'^[a-zA-Z][a-zA-Z0-9+.\-]*:')
CSS_URL_RE = re.compile(r'url\(\s*([\'"]?)(.*?)\1\s*\)', re.IGNORECASE | re.DOTALL)
CSS_IMPORT_RE = re.compile(r'@import\s+([\'"])(.+?)\1', re.IGNORECASE)
META_REFRESH_RE = re.compile(r'^(\s*[\d.]*\s*[;,]?\s*url\s*=\s*)([\'"]?)(.*?)\2(\s*)$', re.IGNORECASE | re.DOTALL)


class RewriteContext(namedtuple('RewriteContext', 'base_origin base_path document_base internal_paths')):
    """Immutable per-request resolution state.

    base_origin   scheme://host[:port] of the page
    base_path     directory of the page URL, with trailing slash
    document_base what relative references resolve against (page URL, or the
                  page's own <base href> when it has one)
    """

    @classmethod
    def from_url(cls, page_url, internal_paths=('/proxy', '/media')):
        parts = urlsplit(page_url)
        base_origin = f"{parts.scheme}://{parts.netloc}"
        path = parts.path or '/'
        base_path = base_origin + path[:path.rfind('/') + 1]
        return cls(base_origin, base_path, page_url, tuple(internal_paths))

    def with_document_base(self, href):
        return self._replace(document_base=urljoin(self.document_base, href.strip()))


def is_internal_path(ref, internal_paths):
    for path in internal_paths:
        if ref == path or ref.startswith(path + '?') or ref.startswith(path + '/'):
            return True
    return False


def should_skip(ref, ctx):
    """Absolute, data:/blob:/javascript:, fragment-only and proxy-internal refs stay as-is"""
    if ref.startswith('#'):
        return True
    if _SCHEME_RE.match(ref):
        return True
    return is_internal_path(ref, ctx.internal_paths)


def resolve_reference(ref, ctx):
    """Absolute form of ref; an empty ref is the document itself"""
    stripped = ref.strip()
    if should_skip(stripped, ctx):
        return ref
    return urljoin(ctx.document_base, stripped)


def _split_srcset(value):
    """Split a srcset into (url, descriptor) pairs the way browsers do.

    URLs run until whitespace, so commas inside a data: URL are kept.
    """
    candidates = []
    pos, n = 0, len(value)
    while pos < n:
        while pos < n and (value[pos].isspace() or value[pos] == ','):
            pos += 1
        if pos >= n:
            break
        start = pos
        while pos < n and not value[pos].isspace():
            pos += 1
        url = value[start:pos]
        descriptor = ''
        if url.endswith(','):
            url = url.rstrip(',')
        else:
            start, depth = pos, 0
            while pos < n and (value[pos] != ',' or depth):
                if value[pos] == '(':
                    depth += 1
                elif value[pos] == ')' and depth:
                    depth -= 1
                pos += 1
            descriptor = value[start:pos].strip()
        candidates.append((url, descriptor))
    return candidates


def rewrite_srcset(value, ctx):
    parts = []
    for url, descriptor in _split_srcset(value):
        if not url:
            continue
        resolved = resolve_reference(url, ctx)
        parts.append(f"{resolved} {descriptor}" if descriptor else resolved)
    return ', '.join(parts)


def _replace_group(match, group, replacement):
    text = match.group(0)
    offset = match.start(0)
    return text[:match.start(group) - offset] + replacement + text[match.end(group) - offset:]


def rewrite_css(css, ctx):
    """Resolve url(...) and @import "..." references, touching nothing else"""
    def replace_url(match):
        if not match.group(2).strip():
            return match.group(0)
        return _replace_group(match, 2, resolve_reference(match.group(2), ctx))

    css = CSS_URL_RE.sub(replace_url, css)
    return CSS_IMPORT_RE.sub(replace_url, css)


def rewrite_meta_refresh(content, ctx):
    match = META_REFRESH_RE.match(content)
    if not match or not match.group(3).strip():
        return content
    return _replace_group(match, 3, resolve_reference(match.group(3), ctx))


def _rewrite_element(element, ctx):
    for attr in URL_ATTRIBUTES:
        value = element.get(attr)
        if not isinstance(value, str):
            continue
        if value.strip() or EMPTY_MEANS_DOCUMENT.get(element.name) == attr:
            element[attr] = resolve_reference(value, ctx)

    for attr in SRCSET_ATTRIBUTES:
        value = element.get(attr)
        if isinstance(value, str) and value.strip():
            element[attr] = rewrite_srcset(value, ctx)

    style = element.get('style')
    if isinstance(style, str) and ('url(' in style.lower() or '@import' in style.lower()):
        element['style'] = rewrite_css(style, ctx)

    if element.name == 'meta' and (element.get('http-equiv') or '').lower() == 'refresh':
        content = element.get('content')
        if isinstance(content, str):
            element['content'] = rewrite_meta_refresh(content, ctx)


def _top_level_insert_index(soup):
    """Position just after any leading doctype"""
    for index, node in enumerate(soup.contents):
        if isinstance(node, Doctype):
            return index + 1
    return 0


def _ensure_base(soup, ctx):
    if soup.find('base') is not None:
        return
    base = soup.new_tag('base', attrs={'href': ctx.base_origin + '/', SHIM_MARKER: 'base'})
    head = soup.head
    if head is None:
        head = soup.new_tag('head')
        if soup.html is not None:
            soup.html.insert(0, head)
        else:
            soup.insert(_top_level_insert_index(soup), head)
    head.insert(0, base)


def _inject_shim(soup, shim_js):
    if soup.find('script', attrs={SHIM_MARKER: 'shim'}) is not None:
        return
    script = soup.new_tag('script', attrs={SHIM_MARKER: 'shim'})
    script.string = shim_js

    body = soup.body
    if body is None:
        body = soup.new_tag('body')
        (soup.html or soup).append(body)
    body.append(script)


def rewrite_html(markup, page_url, shim_js=None, internal_paths=('/proxy', '/media'), encoding=None):
    """Rewrite an HTML document fetched from page_url.

    markup may be bytes (decoded using encoding or the document's own charset
    declaration) or str. Returns the rewritten document as str. Raises
    RewriteFailure if the document cannot be processed.
    """
    ctx = RewriteContext.from_url(page_url, internal_paths)
    try:
        if isinstance(markup, bytes):
            soup = BeautifulSoup(markup, 'html.parser', from_encoding=encoding)
        else:
            soup = BeautifulSoup(markup, 'html.parser')

        # A page-supplied <base> changes what relative references mean;
        # one injected by an earlier pass does not
        page_base = next((b for b in soup.find_all('base', href=True) if not b.has_attr(SHIM_MARKER)), None)
        if page_base is not None and isinstance(page_base['href'], str):
            ctx = ctx.with_document_base(page_base['href'])
            page_base['href'] = urljoin(page_url, page_base['href'].strip())

        for element in soup.find_all(True):
            if element is page_base:
                continue
            _rewrite_element(element, ctx)

        for style in soup.find_all('style'):
            if style.string:
                style.string = rewrite_css(str(style.string), ctx)

        _ensure_base(soup, ctx)
        if shim_js:
            _inject_shim(soup, shim_js)

        return str(soup)
    except RecursionError as e:
        raise RewriteFailure("Document too deeply nested to rewrite", str(e))
    except Exception as e:
        raise RewriteFailure("Failed to rewrite HTML", f"{type(e).__name__}: {e}")
