"""Local JSON API exposing the site-manager operations.

Intended for a desktop shell or other local front end; bind it to loopback.
"""

import logging

from flask import Flask, jsonify, request

from .errors import (
    CommandError,
    MissingDependenciesError,
    SiteExistsError,
    SiteManagerError,
    SiteNotFoundError,
    ValidationError,
)
from .manager import SiteManager

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 400,
    SiteNotFoundError: 404,
    SiteExistsError: 409,
    MissingDependenciesError: 503,
    CommandError: 500,
}


def create_app(manager: SiteManager = None) -> Flask:
    """Create the Flask app serving the site-manager API."""
    app = Flask(__name__)
    manager = manager or SiteManager()

    @app.errorhandler(SiteManagerError)
    def handle_error(error):
        status = ERROR_STATUS.get(type(error), 500)
        if status >= 500:
            logger.error("Request failed: %s", error)
        return jsonify({"success": False, "error": str(error)}), status

    @app.route('/api/dependencies', methods=['GET'])
    def api_dependencies():
        return jsonify(manager.check_dependencies())

    @app.route('/api/dependencies/install', methods=['POST'])
    def api_install_dependencies():
        output = manager.install_dependencies()
        return jsonify({'success': True, 'output': output})

    @app.route('/api/overview', methods=['GET'])
    def api_overview():
        return jsonify(manager.overview())

    @app.route('/api/php-versions', methods=['GET'])
    def api_php_versions():
        manager.require_dependencies()
        return jsonify(manager.list_php_versions())

    @app.route('/api/sites', methods=['GET'])
    def api_sites():
        manager.require_dependencies()
        return jsonify([site.to_dict() for site in manager.list_sites()])

    @app.route('/api/sites', methods=['POST'])
    def api_sites_create():
        data = request.get_json(silent=True) or {}
        site = manager.create_site(
            data.get('domain', ''),
            data.get('type', ''),
            php_version=data.get('php_version'),
            proxy_port=data.get('proxy_port'),
        )
        return jsonify({'success': True, 'site': site.to_dict()}), 201

    @app.route('/api/sites/<domain>', methods=['PUT'])
    def api_sites_update(domain):
        data = request.get_json(silent=True) or {}
        site = manager.update_site(
            domain,
            php_version=data.get('php_version'),
            proxy_port=data.get('proxy_port'),
        )
        return jsonify({'success': True, 'site': site.to_dict()})

    @app.route('/api/sites/<domain>', methods=['DELETE'])
    def api_sites_delete(domain):
        manager.delete_site(domain)
        return jsonify({'success': True})

    @app.route('/api/sites/<domain>/certificate', methods=['POST'])
    def api_sites_certificate(domain):
        cert_path = manager.regenerate_site_cert(domain)
        return jsonify({'success': True, 'certificate': str(cert_path)})

    @app.route('/api/ca/regenerate', methods=['POST'])
    def api_ca_regenerate():
        domains = manager.regenerate_ca()
        return jsonify({'success': True, 'reissued': domains})

    return app
