# application/sandbox/pm_prelude.py
"""
pm-style script API, evaluated inside the embedded JS engine before user code.

Input:  global `__courierState` (JSON document built by ScriptSandbox)
Output: `__courier.dump()` returns the final state as a JSON string.
"""
from __future__ import annotations

PM_PRELUDE = r"""
var __courier = (function (state) {
  "use strict";

  var hasOwn = Object.prototype.hasOwnProperty;
  var phase = state.phase;
  var maxConsole = typeof state.maxConsoleLines === "number" ? state.maxConsoleLines : 1000;
  var consoleLines = [];
  var assertions = [];
  var cancelled = false;

  function copy(obj) {
    var out = {};
    if (obj) {
      for (var k in obj) {
        if (hasOwn.call(obj, k)) out[k] = obj[k];
      }
    }
    return out;
  }

  function toStr(value) {
    if (value === null || value === undefined) return "";
    if (typeof value === "object") {
      try { return JSON.stringify(value); } catch (e) { return String(value); }
    }
    return String(value);
  }

  function show(value) {
    if (typeof value === "string") return "'" + value + "'";
    if (value === undefined) return "undefined";
    try { return JSON.stringify(value); } catch (e) { return String(value); }
  }

  function typeOf(value) {
    if (value === null) return "null";
    if (Array.isArray(value)) return "array";
    return typeof value;
  }

  function deepEqual(a, b) {
    if (a === b) return true;
    if (typeOf(a) !== typeOf(b)) return false;
    if (typeof a === "number" && isNaN(a) && isNaN(b)) return true;
    if (typeof a !== "object" || a === null) return false;
    var ka = Object.keys(a), kb = Object.keys(b);
    if (ka.length !== kb.length) return false;
    for (var i = 0; i < ka.length; i++) {
      if (!hasOwn.call(b, ka[i]) || !deepEqual(a[ka[i]], b[ka[i]])) return false;
    }
    return true;
  }

  // ---- console ----

  function logger(prefix) {
    return function () {
      if (consoleLines.length >= maxConsole) return;
      var parts = [];
      for (var i = 0; i < arguments.length; i++) {
        var a = arguments[i];
        parts.push(typeof a === "string" ? a : show(a));
      }
      consoleLines.push(prefix + parts.join(" "));
    };
  }

  var consoleApi = {
    log: logger(""),
    info: logger(""),
    debug: logger(""),
    warn: logger("[WARN] "),
    error: logger("[ERROR] ")
  };

  // ---- variable scopes ----

  var scopes = {
    globals: copy(state.globals),
    collection: copy(state.collection),
    environment: copy(state.environment),
    local: copy(state.local)
  };

  function scopeApi(name) {
    return {
      get: function (key) {
        var store = scopes[name];
        return hasOwn.call(store, key) ? store[key] : undefined;
      },
      set: function (key, value) { scopes[name][String(key)] = toStr(value); },
      has: function (key) { return hasOwn.call(scopes[name], key); },
      unset: function (key) { delete scopes[name][key]; },
      clear: function () { scopes[name] = {}; },
      toObject: function () { return copy(scopes[name]); }
    };
  }

  function mergedScopes() {
    var out = {};
    ["globals", "collection", "environment", "local"].forEach(function (name) {
      var store = scopes[name];
      for (var k in store) {
        if (hasOwn.call(store, k)) out[k] = store[k];
      }
    });
    return out;
  }

  var variablesApi = scopeApi("local");
  variablesApi.replaceIn = function (text) {
    var merged = mergedScopes();
    return String(text).replace(/\{\{(\w+)\}\}/g, function (whole, key) {
      return hasOwn.call(merged, key) ? merged[key] : whole;
    });
  };

  // ---- headers ----

  function findHeader(target, name) {
    var lowered = String(name).toLowerCase();
    for (var k in target) {
      if (hasOwn.call(target, k) && k.toLowerCase() === lowered) return k;
    }
    return null;
  }

  function withHeaderHelpers(target) {
    var helpers = {
      get: function (name) {
        var k = findHeader(target, name);
        return k === null ? undefined : target[k];
      },
      has: function (name) { return findHeader(target, name) !== null; },
      add: function (header) { target[String(header.key)] = toStr(header.value); },
      upsert: function (header) {
        var k = findHeader(target, header.key);
        target[k === null ? String(header.key) : k] = toStr(header.value);
      },
      remove: function (name) {
        var k = findHeader(target, name);
        if (k !== null) delete target[k];
      },
      toObject: function () { return copy(target); }
    };
    for (var h in helpers) {
      Object.defineProperty(target, h, { value: helpers[h], enumerable: false, writable: true, configurable: true });
    }
    return target;
  }

  // ---- request ----

  var src = state.request || {};
  var request = {
    url: src.url || "",
    method: (src.method || "GET").toUpperCase(),
    headers: withHeaderHelpers(copy(src.headers)),
    body: src.body === undefined ? null : src.body
  };

  var requestApi = {
    cancel: function () { cancelled = true; }
  };
  Object.defineProperty(requestApi, "url", {
    enumerable: true,
    get: function () { return request.url; },
    set: function (v) { request.url = toStr(v); }
  });
  Object.defineProperty(requestApi, "method", {
    enumerable: true,
    get: function () { return request.method; },
    set: function (v) { request.method = toStr(v).toUpperCase(); }
  });
  Object.defineProperty(requestApi, "headers", {
    enumerable: true,
    get: function () { return request.headers; },
    set: function (v) {
      var next = {};
      for (var k in v) {
        if (hasOwn.call(v, k)) next[k] = toStr(v[k]);
      }
      request.headers = withHeaderHelpers(next);
    }
  });
  Object.defineProperty(requestApi, "body", {
    enumerable: true,
    get: function () { return request.body; },
    set: function (v) { request.body = (v === null || v === undefined) ? null : toStr(v); }
  });

  // ---- assertions ----

  function AssertionError(message) {
    this.name = "AssertionError";
    this.message = message;
  }
  AssertionError.prototype = Object.create(Error.prototype);
  AssertionError.prototype.constructor = AssertionError;

  function Assertion(actual) {
    this._actual = actual;
    this._negate = false;
    this._deep = false;
  }

  ["to", "be", "been", "is", "that", "which", "and", "has", "have", "with", "at", "of", "same", "does"].forEach(function (word) {
    Object.defineProperty(Assertion.prototype, word, { get: function () { return this; } });
  });
  Object.defineProperty(Assertion.prototype, "not", {
    get: function () { this._negate = !this._negate; return this; }
  });
  Object.defineProperty(Assertion.prototype, "deep", {
    get: function () { this._deep = true; return this; }
  });

  Assertion.prototype._check = function (ok, message, negatedMessage) {
    if (this._negate ? ok : !ok) {
      throw new AssertionError(this._negate ? negatedMessage : message);
    }
    return this;
  };

  function flag(name, test, word) {
    Object.defineProperty(Assertion.prototype, name, {
      get: function () {
        var a = this._actual;
        return this._check(test(a),
          "expected " + show(a) + " to be " + word,
          "expected " + show(a) + " not to be " + word);
      }
    });
  }

  flag("ok", function (a) { return !!a; }, "truthy");
  flag("true", function (a) { return a === true; }, "true");
  flag("false", function (a) { return a === false; }, "false");
  flag("null", function (a) { return a === null; }, "null");
  flag("undefined", function (a) { return a === undefined; }, "undefined");
  flag("exist", function (a) { return a !== null && a !== undefined; }, "defined");
  flag("NaN", function (a) { return typeof a === "number" && isNaN(a); }, "NaN");
  flag("empty", function (a) {
    if (a === null || a === undefined) return true;
    if (typeof a === "string" || Array.isArray(a)) return a.length === 0;
    if (typeof a === "object") return Object.keys(a).length === 0;
    return false;
  }, "empty");

  Assertion.prototype.equal = function (expected) {
    var a = this._actual;
    var ok = this._deep ? deepEqual(a, expected) : a === expected;
    return this._check(ok,
      "expected " + show(a) + " to equal " + show(expected),
      "expected " + show(a) + " not to equal " + show(expected));
  };
  Assertion.prototype.equals = Assertion.prototype.equal;
  Assertion.prototype.eq = Assertion.prototype.equal;

  Assertion.prototype.eql = function (expected) {
    var a = this._actual;
    return this._check(deepEqual(a, expected),
      "expected " + show(a) + " to deeply equal " + show(expected),
      "expected " + show(a) + " not to deeply equal " + show(expected));
  };

  function compare(name, test, word) {
    Assertion.prototype[name] = function (n) {
      var a = this._actual;
      return this._check(typeof a === "number" && test(a, n),
        "expected " + show(a) + " to be " + word + " " + show(n),
        "expected " + show(a) + " not to be " + word + " " + show(n));
    };
  }

  compare("above", function (a, n) { return a > n; }, "above");
  compare("below", function (a, n) { return a < n; }, "below");
  compare("least", function (a, n) { return a >= n; }, "at least");
  compare("most", function (a, n) { return a <= n; }, "at most");
  Assertion.prototype.gt = Assertion.prototype.above;
  Assertion.prototype.greaterThan = Assertion.prototype.above;
  Assertion.prototype.lt = Assertion.prototype.below;
  Assertion.prototype.lessThan = Assertion.prototype.below;
  Assertion.prototype.gte = Assertion.prototype.least;
  Assertion.prototype.lte = Assertion.prototype.most;

  Assertion.prototype.within = function (lo, hi) {
    var a = this._actual;
    return this._check(typeof a === "number" && a >= lo && a <= hi,
      "expected " + show(a) + " to be within " + lo + ".." + hi,
      "expected " + show(a) + " not to be within " + lo + ".." + hi);
  };

  Assertion.prototype.a = function (type) {
    var a = this._actual;
    var expected = String(type).toLowerCase();
    return this._check(typeOf(a) === expected,
      "expected " + show(a) + " to be a " + expected,
      "expected " + show(a) + " not to be a " + expected);
  };
  Assertion.prototype.an = Assertion.prototype.a;

  Assertion.prototype.property = function (name, value) {
    var a = this._actual;
    var present = a !== null && a !== undefined && name in Object(a);
    if (arguments.length < 2) {
      return this._check(present,
        "expected " + show(a) + " to have property " + show(name),
        "expected " + show(a) + " not to have property " + show(name));
    }
    var ok = present && (this._deep ? deepEqual(a[name], value) : a[name] === value);
    return this._check(ok,
      "expected " + show(a) + " to have property " + show(name) + " of " + show(value),
      "expected " + show(a) + " not to have property " + show(name) + " of " + show(value));
  };

  Assertion.prototype.lengthOf = function (n) {
    var a = this._actual;
    var len = (a !== null && a !== undefined) ? a.length : undefined;
    return this._check(len === n,
      "expected " + show(a) + " to have length " + n + " but got " + len,
      "expected " + show(a) + " not to have length " + n);
  };
  Assertion.prototype.length = Assertion.prototype.lengthOf;

  Assertion.prototype.include = function (item) {
    var a = this._actual;
    var ok = false;
    if (typeof a === "string") {
      ok = a.indexOf(String(item)) !== -1;
    } else if (Array.isArray(a)) {
      for (var i = 0; i < a.length; i++) {
        if (this._deep ? deepEqual(a[i], item) : a[i] === item) { ok = true; break; }
      }
    } else if (a !== null && typeof a === "object") {
      if (item !== null && typeof item === "object") {
        ok = true;
        for (var k in item) {
          if (hasOwn.call(item, k) && !deepEqual(a[k], item[k])) { ok = false; break; }
        }
      } else {
        ok = hasOwn.call(a, item);
      }
    }
    return this._check(ok,
      "expected " + show(a) + " to include " + show(item),
      "expected " + show(a) + " not to include " + show(item));
  };
  Assertion.prototype.includes = Assertion.prototype.include;
  Assertion.prototype.contain = Assertion.prototype.include;
  Assertion.prototype.contains = Assertion.prototype.include;

  Assertion.prototype.match = function (re) {
    var a = this._actual;
    return this._check(re.test(String(a)),
      "expected " + show(a) + " to match " + re,
      "expected " + show(a) + " not to match " + re);
  };

  Assertion.prototype.oneOf = function (list) {
    var a = this._actual;
    return this._check(list.indexOf(a) !== -1,
      "expected " + show(a) + " to be one of " + show(list),
      "expected " + show(a) + " not to be one of " + show(list));
  };

  function expect(actual) {
    return new Assertion(actual);
  }

  function test(name, fn) {
    try {
      if (typeof fn === "function") fn();
      assertions.push({ name: String(name), passed: true, message: null });
    } catch (e) {
      var message = (e && e.message !== undefined) ? String(e.message) : String(e);
      assertions.push({ name: String(name), passed: false, message: message });
    }
  }

  // ---- response (post-response only) ----

  var responseApi;
  if (state.response) {
    var r = state.response;
    var responseHeaders = {};
    for (var hk in (r.headers || {})) {
      if (hasOwn.call(r.headers, hk)) responseHeaders[hk] = [].concat(r.headers[hk]).join(", ");
    }
    withHeaderHelpers(responseHeaders);

    responseApi = {
      code: r.code,
      status: r.status,
      responseTime: r.responseTime,
      headers: Object.freeze(responseHeaders),
      text: function () { return r.body === null || r.body === undefined ? "" : r.body; },
      json: function () { return JSON.parse(r.body); },
      to: {
        have: {
          status: function (code) {
            if (typeof code === "string") {
              expect(r.status).to.equal(code);
            } else {
              expect(r.code).to.equal(code);
            }
          },
          header: function (name) {
            if (findHeader(responseHeaders, name) === null) {
              throw new AssertionError("expected response to have header " + show(name));
            }
          }
        },
        be: {}
      }
    };
    Object.defineProperty(responseApi.to.be, "ok", {
      get: function () { return expect(r.code >= 200 && r.code < 300).to.be.true; }
    });
    Object.freeze(responseApi);
  }

  var pm = {
    globals: scopeApi("globals"),
    collectionVariables: scopeApi("collection"),
    environment: scopeApi("environment"),
    variables: variablesApi,
    request: requestApi,
    response: responseApi,
    info: Object.freeze({ eventName: phase }),
    execution: { skipRequest: requestApi.cancel },
    test: test,
    expect: expect
  };

  function dump() {
    return JSON.stringify({
      globals: scopes.globals,
      collection: scopes.collection,
      environment: scopes.environment,
      local: scopes.local,
      request: {
        url: request.url,
        method: request.method,
        headers: copy(request.headers),
        body: request.body
      },
      cancelled: cancelled,
      assertions: assertions,
      console: consoleLines
    });
  }

  return { pm: pm, console: consoleApi, dump: dump };
})(__courierState);

var pm = __courier.pm;
globalThis.console = __courier.console;
"""


def build_bootstrap(state_json: str) -> str:
    return "var __courierState = " + state_json + ";\n" + PM_PRELUDE
