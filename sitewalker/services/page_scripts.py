"""JavaScript evaluated inside browser pages.

Every script here is either an init script (run by the browser before page
code on every navigation) or a function expression passed to
``page.evaluate(script, arg)``.  The in-page agent reports to the host only
through the exposed ``__sitewalkerBridge`` function; the host reads page state
only through ``evaluate``.
"""

BRIDGE_NAME = "__sitewalkerBridge"
CAPTURE_ATTRIBUTE = "data-sitewalker-capture"
OVERLAY_ID = "sitewalker-screenshot-overlay"

# Serialises one element into the shape of ``ElementSnapshot``.  Shared by the
# snapshot collector and the training agent.
_SNAPSHOT_FN = """
const __swSnapshot = (el, index, rules) => {
  const style = window.getComputedStyle(el);
  const rect = el.getBoundingClientRect();
  const z = parseInt(style.zIndex, 10);
  const className = typeof el.className === 'string' ? el.className : (el.getAttribute('class') || '');
  return {
    index: index,
    tag: el.tagName.toLowerCase(),
    element_id: el.id || '',
    classes: className.trim(),
    position: style.position,
    z_index: isNaN(z) ? 0 : z,
    display: style.display,
    visibility: style.visibility,
    opacity: parseFloat(style.opacity || '1'),
    rect: { x: rect.left, y: rect.top, width: rect.width, height: rect.height },
    viewport: { width: window.innerWidth, height: window.innerHeight },
    text: (el.innerText || el.textContent || '').replace(/\\s+/g, ' ').trim().slice(0, 200),
    has_form_elements: !!el.querySelector('input, button, form, textarea, select'),
    matched_selectors: (rules || []).filter((s) => {
      try { return el.matches(s); } catch (e) { return false; }
    }),
  };
};
"""

# Trained selectors are queried first and only need a non-empty box; the
# heuristic pass then adds every other visible element of at least 50x50.
# Emitted elements are kept in ``window.__sitewalkerScan`` so that a snapshot's
# ``index`` still names the same node after the DOM has changed.
SNAPSHOT_SCRIPT = (
    """
(rules) => {
"""
    + _SNAPSHOT_FN
    + """
  const out = [];
  const seen = new Set();
  const scan = [];
  const emit = (el) => {
    seen.add(el);
    scan.push(el);
    out.push(__swSnapshot(el, scan.length - 1, rules));
  };
  for (const selector of rules || []) {
    let matches = [];
    try { matches = document.querySelectorAll(selector); } catch (e) { continue; }
    matches.forEach((el) => {
      if (seen.has(el) || el.closest('[id^="sitewalker-"]')) return;
      const rect = el.getBoundingClientRect();
      if (rect.width > 0 && rect.height > 0) emit(el);
    });
  }
  const all = document.querySelectorAll('body *');
  for (let i = 0; i < all.length; i++) {
    const el = all[i];
    if (seen.has(el) || el.closest('[id^="sitewalker-"]')) continue;
    const rect = el.getBoundingClientRect();
    if (rect.width < 50 || rect.height < 50) continue;
    const style = window.getComputedStyle(el);
    if (style.display === 'none' || style.visibility === 'hidden' || parseFloat(style.opacity) === 0) continue;
    emit(el);
  }
  window.__sitewalkerScan = scan;
  return out;
}
"""
)

MARK_ELEMENT_SCRIPT = """
([index, token]) => {
  const el = (window.__sitewalkerScan || [])[index];
  if (!el || !el.isConnected) return false;
  document.querySelectorAll('[data-sitewalker-capture]').forEach((n) => n.removeAttribute('data-sitewalker-capture'));
  el.setAttribute('data-sitewalker-capture', token);
  return true;
}
"""

STABILITY_PROBE_SCRIPT = """
(selector) => {
  const el = document.querySelector(selector);
  if (!el) return null;
  const r = el.getBoundingClientRect();
  const html = el.innerHTML;
  let hash = 5381;
  for (let i = 0; i < html.length; i++) hash = ((hash << 5) + hash + html.charCodeAt(i)) | 0;
  return {
    rect: [r.left, r.top, r.width, r.height],
    content: html.length + ':' + hash,
    busy: !!el.querySelector(
      '.loading, .spinner, [class*="loading"], [class*="spinner"], [class*="skeleton"], ' +
      'button[disabled], input[disabled], [aria-busy="true"]'
    ),
  };
}
"""

TAKE_MUTATION_FLAG_SCRIPT = """
() => {
  const flag = !!window.__sitewalkerMutationFlag;
  window.__sitewalkerMutationFlag = false;
  return flag;
}
"""

PUSH_RULES_SCRIPT = """
(selectors) => {
  window.__sitewalkerRules = selectors;
  return selectors.length;
}
"""

SET_TRAINING_SCRIPT = """
(enabled) => {
  window.__sitewalkerTraining = enabled;
  if (typeof window.__sitewalkerSetTraining === 'function') window.__sitewalkerSetTraining(enabled);
  return enabled;
}
"""

LINK_INVENTORY_SCRIPT = """
() => {
  const nodes = document.querySelectorAll('a[href], button, [role="button"], [onclick]');
  const out = [];
  nodes.forEach((el) => {
    const tag = el.tagName.toLowerCase();
    let href = tag === 'a' ? el.href : '';
    if (!href) {
      const onclick = el.getAttribute('onclick') || '';
      const m = onclick.match(/(?:location\\.href|window\\.location)\\s*=\\s*['"]([^'"]+)['"]/);
      const data = el.getAttribute('data-href') || el.getAttribute('data-url');
      if (m) href = new URL(m[1], location.href).href;
      else if (data) href = new URL(data, location.href).href;
    }
    if (!href || href.startsWith('javascript:')) return;
    const r = el.getBoundingClientRect();
    const cls = (typeof el.className === 'string' ? el.className : '').trim().split(/\\s+/).filter(Boolean)[0];
    out.push({
      href: href,
      text: (el.innerText || el.textContent || '').replace(/\\s+/g, ' ').trim().slice(0, 100),
      title: el.getAttribute('title'),
      element_type: tag,
      selector: el.id ? '#' + el.id : (cls ? tag + '.' + cls : tag),
      position: { x: r.left + window.scrollX, y: r.top + window.scrollY },
      is_button: tag !== 'a',
    });
  });
  return out;
}
"""

CLICKABLES_SCRIPT = """
(selector) => Array.from(document.querySelectorAll(selector)).map((el, index) => {
  const style = window.getComputedStyle(el);
  const r = el.getBoundingClientRect();
  return {
    index: index,
    tag_name: el.tagName.toLowerCase(),
    text_content: (el.textContent || '').trim().slice(0, 200),
    inner_text: (el.innerText || '').trim().slice(0, 200),
    nested_text: Array.from(el.querySelectorAll('*'))
      .map((c) => (c.textContent || '').trim())
      .filter(Boolean)
      .join(' ')
      .slice(0, 300),
    class_name: typeof el.className === 'string' ? el.className : '',
    element_id: el.id || '',
    href: el.getAttribute('href') || '',
    aria_label: el.getAttribute('aria-label') || '',
    role: el.getAttribute('role') || '',
    test_id: el.getAttribute('data-testid') || '',
    value: el.value || '',
    is_visible: r.width > 0 && r.height > 0 && style.display !== 'none' && style.visibility !== 'hidden',
  };
})
"""

SHOW_OVERLAY_SCRIPT = """
({ id, breadcrumb, url, timestamp }) => {
  const old = document.getElementById(id);
  if (old) old.remove();
  const banner = document.createElement('div');
  banner.id = id;
  banner.style.cssText = [
    'position: fixed', 'top: 0', 'left: 0', 'right: 0', 'z-index: 2147483647',
    'background: rgba(17, 24, 39, 0.92)', 'color: #fff', 'padding: 8px 16px',
    'font: 13px/1.4 monospace', 'pointer-events: none',
  ].join(';');
  const crumb = document.createElement('div');
  crumb.textContent = breadcrumb;
  crumb.style.fontWeight = 'bold';
  const meta = document.createElement('div');
  meta.textContent = url + '  |  ' + timestamp;
  banner.appendChild(crumb);
  banner.appendChild(meta);
  document.body.appendChild(banner);
  return true;
}
"""

REMOVE_OVERLAY_SCRIPT = """
(id) => {
  const el = document.getElementById(id);
  if (el) el.remove();
  return !!el;
}
"""

# Installed with ``add_init_script`` so it is present on every document of a
# live session.  Idempotent: evaluating it twice on one document is harmless.
AGENT_SCRIPT = (
    """
(() => {
  if (window.__sitewalkerAgent) return;
  window.__sitewalkerAgent = true;
  window.__sitewalkerMutationFlag = false;
  window.__sitewalkerTraining = window.__sitewalkerTraining || false;
  window.__sitewalkerRules = window.__sitewalkerRules || [];
"""
    + _SNAPSHOT_FN
    + """
  const send = (kind, data) => {
    const bridge = window.__sitewalkerBridge;
    if (typeof bridge !== 'function') return Promise.resolve(null);
    return bridge({ kind: kind, data: data }).catch(() => null);
  };
  const isOwnUi = (el) => !!(el && el.closest && el.closest('[id^="sitewalker-"]'));
  const firstClass = (el) =>
    (typeof el.className === 'string' ? el.className : '').trim().split(/\\s+/).filter(Boolean)[0];
  const cssPath = (el) => {
    const parts = [];
    let node = el;
    while (node && node.nodeType === 1 && parts.length < 5) {
      if (node.id) { parts.unshift('#' + CSS.escape(node.id)); break; }
      const cls = firstClass(node);
      parts.unshift(node.tagName.toLowerCase() + (cls ? '.' + CSS.escape(cls) : ''));
      node = node.parentElement;
    }
    return parts.join(' > ');
  };
  const describe = (el) => ({
    tag_name: el.tagName.toLowerCase(),
    selector: cssPath(el),
    text: (el.innerText || el.value || '').replace(/\\s+/g, ' ').trim().slice(0, 100),
    element_id: el.id || null,
    element_type: el.getAttribute('type') || el.tagName.toLowerCase(),
    name: el.getAttribute('name'),
    placeholder: el.getAttribute('placeholder'),
    href: el.closest('a') ? el.closest('a').href : null,
  });

  const observe = () => {
    const observer = new MutationObserver((mutations) => {
      for (const m of mutations) {
        if (isOwnUi(m.target)) continue;
        if (m.type === 'childList' && m.addedNodes.length === 0) continue;
        window.__sitewalkerMutationFlag = true;
        return;
      }
    });
    observer.observe(document.documentElement, {
      childList: true, subtree: true, attributes: true, attributeFilter: ['style', 'class'],
    });
  };
  if (document.documentElement) observe();
  else document.addEventListener('DOMContentLoaded', observe);

  // Status indicator
  const renderStatus = () => {
    if (!document.body) return;
    let badge = document.getElementById('sitewalker-status');
    if (!badge) {
      badge = document.createElement('div');
      badge.id = 'sitewalker-status';
      badge.style.cssText = 'position:fixed;bottom:12px;right:12px;z-index:2147483647;padding:6px 12px;' +
        'border-radius:14px;font:12px sans-serif;color:#fff;pointer-events:none;';
      document.body.appendChild(badge);
    }
    const training = window.__sitewalkerTraining;
    badge.textContent = training ? 'Training mode (Esc to exit)' : 'Recording';
    badge.style.background = training ? '#7c3aed' : '#dc2626';
  };
  document.addEventListener('DOMContentLoaded', renderStatus);

  let highlighted = null;
  const clearHighlight = () => {
    if (highlighted) {
      highlighted.style.outline = highlighted.__swOutline || '';
      highlighted = null;
    }
  };
  window.__sitewalkerSetTraining = (enabled) => {
    window.__sitewalkerTraining = enabled;
    if (!enabled) clearHighlight();
    renderStatus();
  };

  const trainingPayload = (el) => {
    const s = __swSnapshot(el, -1, window.__sitewalkerRules);
    const context = [];
    let parent = el.parentElement;
    for (let level = 1; parent && level <= 3; level++, parent = parent.parentElement) {
      const ps = window.getComputedStyle(parent);
      context.push({
        tag_name: parent.tagName.toLowerCase(),
        class_name: typeof parent.className === 'string' ? parent.className : '',
        position: ps.position,
        z_index: parseInt(ps.zIndex, 10) || 0,
        level: level,
        relationship: 'parent',
      });
    }
    if (el.parentElement) {
      Array.from(el.parentElement.children).filter((c) => c !== el).slice(0, 10).forEach((sib) => {
        const ss = window.getComputedStyle(sib);
        context.push({
          tag_name: sib.tagName.toLowerCase(),
          class_name: typeof sib.className === 'string' ? sib.className : '',
          position: ss.position,
          z_index: parseInt(ss.zIndex, 10) || 0,
          level: 0,
          relationship: 'sibling',
        });
      });
    }
    return {
      snapshot: s,
      payload: {
        tag_name: s.tag,
        primary_class: firstClass(el) || null,
        all_classes: s.classes,
        element_id: s.element_id || null,
        position: s.position,
        z_index: s.z_index,
        width: s.rect.width,
        height: s.rect.height,
        top: s.rect.y,
        left: s.rect.x,
        background_color: window.getComputedStyle(el).backgroundColor,
        text_preview: s.text.slice(0, 100),
        has_form_elements: s.has_form_elements,
        url: location.href,
        context_elements: context,
      },
    };
  };

  const toast = (message) => {
    const el = document.createElement('div');
    el.id = 'sitewalker-toast';
    el.textContent = message;
    el.style.cssText = 'position:fixed;top:16px;right:16px;z-index:2147483647;background:#111827;' +
      'color:#fff;padding:10px 14px;border-radius:6px;font:13px sans-serif;';
    document.body.appendChild(el);
    setTimeout(() => el.remove(), 2500);
  };

  const openTrainingDialog = (el) => {
    const existing = document.getElementById('sitewalker-training-dialog');
    if (existing) existing.remove();
    const { snapshot, payload } = trainingPayload(el);
    const dialog = document.createElement('div');
    dialog.id = 'sitewalker-training-dialog';
    dialog.style.cssText = 'position:fixed;top:50%;left:50%;transform:translate(-50%,-50%);' +
      'z-index:2147483647;background:#fff;color:#111;padding:20px;border-radius:8px;' +
      'box-shadow:0 10px 30px rgba(0,0,0,.3);font:14px sans-serif;min-width:320px;';
    const types = ['modal', 'popup', 'dialog', 'notification', 'tooltip', 'drawer', 'custom'];
    dialog.innerHTML =
      '<div style="font-weight:bold;margin-bottom:12px">Train component</div>' +
      '<label>Type <select id="sitewalker-component-type">' +
      types.map((t) => '<option value="' + t + '">' + t + '</option>').join('') +
      '</select></label><br><br>' +
      '<label>Name <input id="sitewalker-component-name" style="width:100%"></label><br><br>' +
      '<button id="sitewalker-train-save">Save</button> ' +
      '<button id="sitewalker-train-cancel">Cancel</button>';
    document.body.appendChild(dialog);
    dialog.querySelector('#sitewalker-train-cancel').addEventListener('click', () => dialog.remove());
    dialog.querySelector('#sitewalker-train-save').addEventListener('click', async () => {
      const type = dialog.querySelector('#sitewalker-component-type').value || 'modal';
      const name = dialog.querySelector('#sitewalker-component-name').value.trim();
      payload.component_type = type;
      payload.component_name = name || null;
      dialog.remove();
      const result = await send('train', { snapshot: snapshot, payload: payload });
      toast(result && result.ok ? 'Trained: ' + result.name + ' (' + type + ')' : 'Training failed');
    });
  };

  document.addEventListener('mouseover', async (e) => {
    if (!window.__sitewalkerTraining || isOwnUi(e.target)) return;
    clearHighlight();
    const el = e.target;
    highlighted = el;
    el.__swOutline = el.style.outline;
    const score = await send('score', __swSnapshot(el, -1, window.__sitewalkerRules));
    if (highlighted !== el) return;
    const value = typeof score === 'number' ? score : 0;
    el.style.outline = '3px solid ' + (value >= 70 ? '#16a34a' : value >= 50 ? '#f59e0b' : '#dc2626');
  }, true);

  document.addEventListener('click', (e) => {
    if (isOwnUi(e.target)) return;
    if (window.__sitewalkerTraining) {
      e.preventDefault();
      e.stopPropagation();
      clearHighlight();
      openTrainingDialog(e.target);
      return;
    }
    send('interaction', Object.assign({ type: 'click', x: e.clientX, y: e.clientY }, describe(e.target)));
  }, true);

  document.addEventListener('change', (e) => {
    const el = e.target;
    if (window.__sitewalkerTraining || isOwnUi(el)) return;
    if (!['input', 'textarea', 'select'].includes(el.tagName.toLowerCase())) return;
    const value = el.type === 'password' ? '********' : (el.value || '');
    send('interaction', Object.assign(describe(el), { type: 'type', text: value }));
  }, true);

  document.addEventListener('keydown', (e) => {
    if (e.key === 'Escape' && window.__sitewalkerTraining) {
      send('training_exit', {});
      return;
    }
    const el = e.target;
    if (e.key !== 'Enter' || window.__sitewalkerTraining || isOwnUi(el)) return;
    if (!el.tagName || !['input', 'textarea'].includes(el.tagName.toLowerCase())) return;
    const value = el.type === 'password' ? '********' : (el.value || '');
    send('interaction', Object.assign(describe(el), { type: 'type', key: 'Enter', text: value }));
  }, true);

  let lastScroll = 0;
  window.addEventListener('scroll', () => {
    if (window.__sitewalkerTraining) return;
    const now = Date.now();
    if (now - lastScroll < 500) return;
    lastScroll = now;
    send('interaction', { type: 'scroll', scroll_x: window.scrollX, scroll_y: window.scrollY });
  }, true);
})();
"""
)
