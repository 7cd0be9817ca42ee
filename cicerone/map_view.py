"""Browser map view for Cicerone and static folium export."""

import http.server
import json
import socketserver
import threading
import time
import webbrowser
from functools import partial
from typing import Callable, Optional

import folium
import websockets
from folium import plugins

from .config import CONFIG
from .gps import MapClickLocation
from .logger import Logger
from .models import Location


# HTML template for the live map
MAP_HTML = '''<!DOCTYPE html>
<html>
<head>
    <title>Cicerone</title>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <link rel="stylesheet" href="https://unpkg.com/leaflet@1.9.4/dist/leaflet.css" />
    <script src="https://unpkg.com/leaflet@1.9.4/dist/leaflet.js"></script>
    <style>
        * { margin: 0; padding: 0; box-sizing: border-box; }
        body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif; height: 100vh; }
        #map { height: 100vh; width: 100vw; }
        .controls { position: absolute; top: 10px; left: 50px; background: white; padding: 10px 14px; border-radius: 10px; box-shadow: 0 2px 6px rgba(0,0,0,0.3); z-index: 1000; font-size: 0.9rem; }
        .controls div { margin-bottom: 5px; }
        .controls button { border: none; border-radius: 6px; padding: 4px 8px; cursor: pointer; background: #ddd; }
        .controls button.active-walking { background: #4CAF50; color: white; }
        .controls button.active-driving { background: #2196F3; color: white; }
        .controls button.stop { background: #f44336; color: white; margin-left: 8px; }
        .status { margin-top: 4px; font-size: 0.9em; }
        .toast { position: absolute; bottom: 20px; left: 50%; transform: translateX(-50%); background: #333; color: white; padding: 10px 20px; border-radius: 20px; z-index: 2000; opacity: 0.9; display: none; }
        .listen { margin-top: 6px; padding: 4px 8px; border-radius: 6px; border: none; background: #4CAF50; color: white; cursor: pointer; }
        .poi-image { width: 100px; border-radius: 8px; margin: 4px 0; }
    </style>
</head>
<body>
    <div id="map"></div>
    <div class="controls">
        <div>
            <label>Modalità: </label>
            <button id="mode-walking" onclick="send('mode', {mode: 'walking'})">A piedi</button>
            <button id="mode-driving" onclick="send('mode', {mode: 'driving'})">Auto</button>
            <label><input type="checkbox" id="follow" checked onchange="send('follow', {enabled: this.checked})"> Segui</label>
        </div>
        <div>
            <label>Cerca: </label>
            <input type="text" id="search" placeholder="Nome POI..." oninput="send('criteria', {search_text: this.value})">
        </div>
        <div>
            <label>Categoria: </label>
            <select id="category" onchange="send('criteria', {category: this.value})"></select>
        </div>
        <div>
            <label>Raggio: </label>
            <select id="radius" onchange="send('criteria', {radius_km: Number(this.value)})">{{RADIUS_OPTIONS}}</select>
        </div>
        <button onclick="send('reload', {})">Ricarica POI</button>
        <button class="stop" onclick="send('stop', {})">Ferma voce</button>
        <div class="status" id="status">Connessione...</div>
    </div>
    <div class="toast" id="toast"></div>
    <script>
        var map = L.map('map').setView([45.07, 7.69], {{ZOOM}});
        L.tileLayer('https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png', {
            attribution: '&copy; OpenStreetMap contributors'
        }).addTo(map);

        var ws = null;
        var poiLayer = L.layerGroup().addTo(map);
        var userMarker = null;
        var radiusCircle = null;
        var centered = false;
        var shownIds = null;

        function send(type, data) {
            if (ws && ws.readyState === WebSocket.OPEN) {
                ws.send(JSON.stringify({type: type, data: data}));
            }
        }

        // First press or touch unlocks audio; listen and stop do it themselves
        function unlock(kind, e) {
            if (e.target.closest && e.target.closest('.listen, .stop')) return;
            send('interact', {kind: kind});
        }
        document.addEventListener('pointerdown', function(e) { unlock('pointer', e); }, true);
        document.addEventListener('touchstart', function(e) { unlock('touch', e); }, true);

        function connect() {
            ws = new WebSocket('ws://' + location.hostname + ':{{WS_PORT}}');
            ws.onclose = function() {
                document.getElementById('status').textContent = 'Disconnesso';
                setTimeout(connect, 2000);
            };
            ws.onmessage = function(event) {
                var msg = JSON.parse(event.data);
                if (msg.type === 'state') { updateState(msg.data); }
                else if (msg.type === 'log') { console.log(msg.data.message, msg.data.data || ''); }
            };
        }

        function escapeHtml(text) {
            var div = document.createElement('div');
            div.textContent = text == null ? '' : String(text);
            return div.innerHTML;
        }

        function popupHtml(p) {
            var html = '<b>' + escapeHtml(p.name) + '</b><br>';
            if (p.elevation != null) { html += 'Altitudine: ' + p.elevation + ' m<br>'; }
            if (p.image_url) { html += '<img class="poi-image" src="' + escapeHtml(p.image_url) + '"><br>'; }
            html += escapeHtml(p.description) + '<br><i>' + escapeHtml(p.category) + '</i><br>';
            html += '<button class="listen" onclick="send(\\'select\\', {id: ' + p.id + '})">Ascolta descrizione</button>';
            return html;
        }

        function updateState(state) {
            document.getElementById('status').textContent = state.status;
            document.getElementById('mode-walking').className = state.mode === 'walking' ? 'active-walking' : '';
            document.getElementById('mode-driving').className = state.mode === 'driving' ? 'active-driving' : '';
            document.getElementById('follow').checked = state.follow;

            var select = document.getElementById('category');
            var current = state.criteria.category;
            select.innerHTML = '';
            state.categories.forEach(function(cat) {
                var opt = document.createElement('option');
                opt.value = cat; opt.textContent = cat; opt.selected = cat === current;
                select.appendChild(opt);
            });
            document.getElementById('radius').value = String(state.criteria.radius_km);

            var toast = document.getElementById('toast');
            toast.textContent = state.narrating || '';
            toast.style.display = state.narrating ? 'block' : 'none';

            var ids = state.pois.map(function(p) { return p.id; }).join(',');
            if (ids !== shownIds) {
                poiLayer.clearLayers();
                state.pois.forEach(function(p) {
                    L.marker([p.lat, p.lon]).addTo(poiLayer).bindPopup(popupHtml(p));
                });
                shownIds = ids;
            }

            if (radiusCircle) { map.removeLayer(radiusCircle); radiusCircle = null; }
            if (state.location) {
                var pos = [state.location.lat, state.location.lon];
                if (userMarker) {
                    userMarker.setLatLng(pos);
                } else {
                    userMarker = L.circleMarker(pos, {radius: 8, fillColor: '#ef4444', color: '#ffffff', weight: 3, fillOpacity: 1}).addTo(map);
                    userMarker.bindPopup('La tua posizione');
                }
                if (state.criteria.radius_km > 0) {
                    radiusCircle = L.circle(pos, {radius: state.criteria.radius_km * 1000, color: 'blue', fillColor: '#add8e6', fillOpacity: 0.2}).addTo(map);
                }
                if (state.recenter || !centered) {
                    map.setView(pos, map.getZoom());
                    centered = true;
                }
            }
        }

        map.on('click', function(e) {
            send('location', {lat: e.latlng.lat, lon: e.latlng.lng});
        });

        connect();
    </script>
</body>
</html>'''

CATEGORY_COLORS = {
    "Montagna": "darkgreen",
    "Città": "blue",
    "Lago": "lightblue",
    "Monumento": "red",
    "Parco": "green",
}
DEFAULT_COLOR = "gray"


def render_page(ws_port: int) -> str:
    options = "".join(
        f'<option value="{r}">{"Tutti" if r == 0 else (f"{int(r * 1000)} m" if r < 1 else f"{r} km")}</option>'
        for r in CONFIG["radius_choices_km"]
    )
    return (MAP_HTML
            .replace('{{WS_PORT}}', str(ws_port))
            .replace('{{ZOOM}}', str(CONFIG["map_zoom"]))
            .replace('{{RADIUS_OPTIONS}}', options))


class MapServer:
    """HTTP page plus WebSocket channel between the browser map and the guide"""

    def __init__(self, on_command: Optional[Callable[[dict], None]] = None,
                 click_source: Optional[MapClickLocation] = None,
                 http_port: Optional[int] = None, ws_port: Optional[int] = None,
                 open_browser: bool = True, logger: Optional[Logger] = None):
        self.on_command = on_command
        self.logger = logger
        self.click_source = click_source
        self.http_port = http_port or CONFIG["map_http_port"]
        self.ws_port = ws_port or CONFIG["map_ws_port"]
        self.open_browser = open_browser
        self.connected_clients: set = set()
        self.last_state: Optional[dict] = None
        self.http_thread = None
        self._ws_server = None
        self._running = False

    async def start(self):
        """Start the page server thread and the WebSocket server on this loop"""
        self._running = True

        self.http_thread = threading.Thread(target=self._run_http_server, daemon=True)
        self.http_thread.start()

        self._ws_server = await websockets.serve(self._handler, "localhost", self.ws_port)

        url = f"http://localhost:{self.http_port}"
        print(f"Map available at: {url}")
        if self.open_browser:
            webbrowser.open(url)

    def _run_http_server(self):
        """Run the HTTP server for serving the page"""
        handler = partial(_MapHTTPHandler, self.ws_port)
        with _ReusableTCPServer(("", self.http_port), handler) as httpd:
            httpd.timeout = 0.5
            while self._running:
                httpd.handle_request()

    async def _handler(self, websocket):
        self.connected_clients.add(websocket)
        try:
            if self.last_state is not None:
                await websocket.send(json.dumps({"type": "state", "data": self.last_state}))
            async for message in websocket:
                try:
                    msg = json.loads(message)
                except json.JSONDecodeError:
                    continue
                if isinstance(msg, dict):
                    self.dispatch(msg)
        finally:
            self.connected_clients.discard(websocket)

    def dispatch(self, msg: dict):
        """Route one browser message; map clicks also feed the click position source"""
        if msg.get("type") == "location" and self.click_source is not None:
            try:
                data = msg["data"]
                location = Location(lat=float(data["lat"]), lon=float(data["lon"]),
                                    accuracy=0, timestamp=time.time())
            except (KeyError, TypeError, ValueError) as e:
                if self.logger:
                    self.logger.warning("Bad map click", {"command": msg, "reason": repr(e)})
            else:
                self.click_source.push(location)
        if self.on_command:
            self.on_command(msg)

    def _send_message(self, msg_type: str, data: dict):
        """Send a message to all connected WebSocket clients"""
        if not self.connected_clients:
            return
        message = json.dumps({"type": msg_type, "data": data}, default=str)
        websockets.broadcast(self.connected_clients, message)

    def publish(self, state: dict):
        """Send guide state to the browser"""
        self.last_state = state
        self._send_message("state", state)

    def send_log(self, message: str, data: Optional[dict] = None):
        self._send_message("log", {"message": message, "data": data})

    def stop(self):
        self._running = False
        if self._ws_server is not None:
            self._ws_server.close()
            self._ws_server = None


class _ReusableTCPServer(socketserver.TCPServer):
    allow_reuse_address = True


class _MapHTTPHandler(http.server.SimpleHTTPRequestHandler):
    """HTTP handler that serves the map page"""

    def __init__(self, ws_port: int, *args, **kwargs):
        self.ws_port = ws_port
        super().__init__(*args, **kwargs)

    def do_GET(self):
        if self.path == '/' or self.path == '/index.html':
            self.send_response(200)
            self.send_header('Content-type', 'text/html; charset=utf-8')
            self.end_headers()
            self.wfile.write(render_page(self.ws_port).encode())
        else:
            self.send_error(404)

    def log_message(self, format, *args):
        pass  # Suppress HTTP log messages


def create_map(state: dict) -> folium.Map:
    """Static map of the visible POIs from a guide state snapshot"""
    pois = state.get("pois", [])
    location = state.get("location")
    if location:
        center = [location["lat"], location["lon"]]
    elif pois:
        center = [pois[0]["lat"], pois[0]["lon"]]
    else:
        raise ValueError("Nothing to show: no position and no POIs")

    m = folium.Map(location=center, zoom_start=CONFIG["map_zoom"], tiles="OpenStreetMap")

    poi_layer = folium.FeatureGroup(name="POI", show=True)
    for p in pois:
        popup_text = f"<b>{p['name']}</b><br>"
        if p.get("elevation") is not None:
            popup_text += f"Altitudine: {p['elevation']} m<br>"
        if p.get("image_url"):
            popup_text += f'<img src="{p["image_url"]}" style="width: 100px; border-radius: 8px"><br>'
        popup_text += f"{p['description']}<br><i>{p['category']}</i>"

        folium.Marker(
            [p["lat"], p["lon"]],
            popup=folium.Popup(popup_text, max_width=250),
            tooltip=p["name"],
            icon=folium.Icon(color=CATEGORY_COLORS.get(p["category"], DEFAULT_COLOR), icon="info-sign")
        ).add_to(poi_layer)
    poi_layer.add_to(m)

    if location:
        folium.Marker(
            center,
            popup="La tua posizione",
            icon=folium.Icon(color="red", icon="user")
        ).add_to(m)
        radius_km = state.get("criteria", {}).get("radius_km", 0)
        if radius_km > 0:
            folium.Circle(
                center,
                radius=radius_km * 1000,
                color="blue",
                fill=True,
                fill_color="#add8e6",
                fill_opacity=0.2
            ).add_to(m)

    folium.LayerControl().add_to(m)
    plugins.Fullscreen().add_to(m)

    return m


def export_map_html(state: dict, path: str) -> str:
    m = create_map(state)
    m.save(path)
    return path
