"""
Anzen ERP: HTML templates for the shell page, login and first-run setup.
Pages are rendered with render_template_string; data comes from /api/*.
"""

BASE_CSS = """
:root{--bg:#0f1117;--sf:#1a1d27;--sf2:#242836;--bd:#2e3345;--tx:#e4e6ed;--tx2:#8b90a0;
--ac:#4f8cff;--ac2:#3b6fd4;--gn:#34d399;--yl:#fbbf24;--rd:#f87171;--or:#fb923c;--r:10px}
*{margin:0;padding:0;box-sizing:border-box}
body{font-family:'DM Sans',sans-serif;background:var(--bg);color:var(--tx);min-height:100vh}
a{color:var(--ac);text-decoration:none}
.hdr{background:var(--sf);border-bottom:2px solid var(--bd);padding:14px 28px;display:flex;justify-content:space-between;align-items:center;gap:12px;min-height:64px}
.hdr h1{font-size:17px;font-weight:600;letter-spacing:-0.3px}.hdr h1 span{color:var(--ac)}
.hdr-right{display:flex;align-items:center;gap:14px;font-size:12px;font-family:'JetBrains Mono',monospace;color:var(--tx2)}
.poll-dot{width:10px;height:10px;border-radius:50%;display:inline-block;margin-right:4px}
.poll-on{background:var(--gn);box-shadow:0 0 8px var(--gn)}.poll-off{background:var(--rd)}
.layout{display:grid;grid-template-columns:220px 1fr;min-height:calc(100vh - 64px)}
.side{background:var(--sf);border-right:1px solid var(--bd);padding:16px 10px}
.side a{display:block;padding:8px 12px;border-radius:7px;color:var(--tx2);font-size:13px;margin-bottom:2px}
.side a:hover{background:var(--sf2);color:var(--tx)}
.side a.active{background:rgba(79,140,255,.12);color:#fff;border-left:3px solid var(--ac)}
.ctr{padding:20px 28px;max-width:1600px}
.card{background:var(--sf);border:1px solid var(--bd);border-radius:var(--r);padding:20px;margin-bottom:16px}
.card-t{font-size:12px;font-weight:600;color:var(--tx2);text-transform:uppercase;letter-spacing:1px;margin-bottom:14px}
.kpis{display:grid;grid-template-columns:repeat(auto-fit,minmax(160px,1fr));gap:14px;margin-bottom:16px}
.kpi-card{padding:16px 18px;text-align:center}
.kpi-card-label{font-size:10px;font-weight:600;color:var(--tx2);text-transform:uppercase;letter-spacing:.5px}
.kpi-card-value{font-size:26px;font-weight:700;font-family:'JetBrains Mono',monospace;line-height:1.3;margin:4px 0}
table.it{width:100%;border-collapse:collapse;font-size:12px}
table.it th{text-align:left;padding:8px;font-size:10px;color:var(--tx2);text-transform:uppercase;letter-spacing:.5px;border-bottom:1px solid var(--bd)}
table.it td{padding:8px;border-bottom:1px solid var(--bd);vertical-align:middle}
.badge{padding:3px 9px;border-radius:16px;font-size:10px;font-weight:600;text-transform:uppercase;letter-spacing:.5px}
.b-draft{background:rgba(251,191,36,.2);color:var(--yl)}.b-posted{background:rgba(52,211,153,.2);color:var(--gn)}
.b-new{background:rgba(79,140,255,.15);color:var(--ac)}.b-urgent{background:rgba(248,113,113,.15);color:var(--rd)}
.btn{display:inline-flex;align-items:center;gap:6px;padding:8px 16px;border-radius:7px;font-size:13px;font-weight:600;cursor:pointer;border:none;text-decoration:none}
.btn-p{background:var(--ac);color:#fff}.btn-p:hover{background:var(--ac2)}
.btn-s{background:var(--sf2);color:var(--tx);border:1px solid var(--bd)}
.btn-sm{padding:5px 10px;font-size:11px;border-radius:5px}
.alert{padding:10px 14px;border-radius:8px;font-size:12px;margin-bottom:12px}
.al-e{background:rgba(248,113,113,.1);border:1px solid rgba(248,113,113,.3);color:var(--rd)}
.al-i{background:rgba(79,140,255,.1);border:1px solid rgba(79,140,255,.3);color:var(--ac)}
.notif-item{padding:10px 12px;border-bottom:1px solid rgba(46,51,69,.5);font-size:13px}
.notif-item.sev-error{border-left:3px solid var(--rd)}.notif-item.sev-warning{border-left:3px solid var(--yl)}
.notif-item.sev-info{border-left:3px solid var(--ac)}
.notif-detail{font-size:11px;color:var(--tx2);margin-top:2px}
.auth-box{max-width:360px;margin:80px auto}
.auth-box input{width:100%;background:var(--sf2);border:1px solid var(--bd);color:var(--tx);padding:9px 12px;border-radius:7px;margin-bottom:10px;font-size:13px}
.auth-box input:focus{outline:none;border-color:var(--ac)}
.empty{text-align:center;padding:48px 20px;color:var(--tx2)}
.mono{font-family:'JetBrains Mono',monospace;font-size:11px;color:var(--tx2)}
@media(max-width:900px){.layout{grid-template-columns:1fr}.side{display:none}}
"""

_HEAD = """<!DOCTYPE html><html><head><meta charset="utf-8"><meta name="viewport" content="width=device-width,initial-scale=1">
<title>{{ company }}</title>
<link href="https://fonts.googleapis.com/css2?family=DM+Sans:wght@400;500;600;700&family=JetBrains+Mono:wght@400;500&display=swap" rel="stylesheet">
<style>""" + BASE_CSS + """</style></head><body>"""

PAGE_LOGIN = _HEAD + """
<div class="auth-box card">
 <div class="card-t">{{ company }}</div>
 <div id="err" class="alert al-e" style="display:none"></div>
 <input id="u" placeholder="Username" autocomplete="username">
 <input id="p" type="password" placeholder="Password" autocomplete="current-password">
 <button class="btn btn-p" onclick="login()">Sign in</button>
</div>
<script>
function login(){
 fetch('/api/auth/login',{method:'POST',headers:{'Content-Type':'application/json'},
  body:JSON.stringify({username:document.getElementById('u').value,password:document.getElementById('p').value})})
 .then(r=>r.json()).then(d=>{
  if(d.ok){location.href='/'}else{var e=document.getElementById('err');e.textContent=d.error;e.style.display='block'}
 });
}
</script></body></html>"""

PAGE_SETUP = _HEAD + """
<div class="auth-box card">
 <div class="card-t">First-run setup: create administrator</div>
 {% if error %}<div class="alert al-e">{{ error }}</div>{% endif %}
 <form method="post">
  <input name="username" placeholder="Username" required>
  <input name="full_name" placeholder="Full name">
  <input name="email" placeholder="Email">
  <input name="password" type="password" placeholder="Password (min 6)" required>
  <button class="btn btn-p" type="submit">Create admin</button>
 </form>
</div></body></html>"""

PAGE_HOME = _HEAD + """
<div class="hdr"><h1><span>Anzen</span> {{ company }}</h1>
<div class="hdr-right">
 <div><span class="poll-dot {{ 'poll-on' if poll.running else 'poll-off' }}"></span>
 {{ 'Email sync on' if poll.running else 'Email sync off' }}{% if poll.last_check %} · Last: {{ poll.last_check[:16] }}{% endif %}</div>
 <div>{{ user.full_name }} ({{ user.role }})</div>
 <a href="#" class="btn btn-s btn-sm" onclick="logout()">{{ logout_label }}</a>
</div></div>
<div class="layout">
<nav class="side">
 {% for item in menu %}
 <a href="#" class="{{ 'active' if item.id == nav.current_page else '' }}" onclick="go('{{ item.id }}')">{{ item.label }}</a>
 {% endfor %}
</nav>
<main class="ctr">
 <div class="kpis">
  <div class="card kpi-card"><div class="kpi-card-label">Products</div><div class="kpi-card-value">{{ stats.products }}</div></div>
  <div class="card kpi-card"><div class="kpi-card-label">Low stock</div><div class="kpi-card-value">{{ stats.low_stock }}</div></div>
  <div class="card kpi-card"><div class="kpi-card-label">Expiring batches</div><div class="kpi-card-value">{{ stats.expiring_batches }}</div></div>
  <div class="card kpi-card"><div class="kpi-card-label">Open inquiries</div><div class="kpi-card-value">{{ stats.open_inquiries }}</div></div>
  <div class="card kpi-card"><div class="kpi-card-label">Unprocessed mail</div><div class="kpi-card-value">{{ stats.unprocessed_emails }}</div></div>
 </div>
 <div class="card"><div class="card-t">Notifications</div>
 {% for n in notifications %}
  <div class="notif-item sev-{{ n.severity }}">{{ n.title }}<div class="notif-detail">{{ n.detail }}</div></div>
 {% else %}
  <div class="empty">Nothing needs attention</div>
 {% endfor %}
 </div>
 <div class="card"><div class="card-t" id="page-title">{{ nav.current_page }}</div><div id="page"></div></div>
</main></div>
<script>
var PAGE_API={'products':'/api/products','stock':'/api/stock','batches':'/api/batches',
 'inventory':'/api/inventory/transactions','customers':'/api/customers','crm':'/api/crm/inquiries',
 'delivery-challan':'/api/delivery-challans','goods-receipt-notes':'/api/grns',
 'sales':'/api/sales/invoices','finance':'/api/finance/entries','settings':'/api/settings'};
function go(page){
 fetch('/api/navigation',{method:'POST',headers:{'Content-Type':'application/json'},body:JSON.stringify({page:page})})
 .then(r=>r.json()).then(d=>{if(d.ok){location.reload()}});
}
function logout(){fetch('/api/auth/logout',{method:'POST'}).then(()=>location.href='/login')}
function renderRows(rows){
 if(!rows||!rows.length){return '<div class="empty">No records</div>'}
 var cols=Object.keys(rows[0]).filter(c=>typeof rows[0][c]!=='object').slice(0,9);
 var h='<table class="it"><thead><tr>'+cols.map(c=>'<th>'+c+'</th>').join('')+'</tr></thead><tbody>';
 rows.forEach(r=>{h+='<tr>'+cols.map(c=>'<td>'+(r[c]==null?'':r[c])+'</td>').join('')+'</tr>'});
 return h+'</tbody></table>';
}
(function(){
 var url=PAGE_API['{{ nav.current_page }}'];if(!url)return;
 fetch(url).then(r=>r.json()).then(d=>{
  var key=Object.keys(d).find(k=>Array.isArray(d[k]));
  document.getElementById('page').innerHTML=key?renderRows(d[key]):'<pre class="mono">'+JSON.stringify(d,null,1)+'</pre>';
 });
})();
</script>
</body></html>"""
