"""Cloud-init user-data that installs PostgreSQL on first boot."""

from pathlib import Path
from textwrap import dedent

# EC2 rejects user-data above 16 KiB (before base64 encoding)
USER_DATA_LIMIT = 16384

SETUP_LOG = "/var/log/postgres-setup.log"


def render_user_data(
    db_name: str = "myapp_db",
    db_user: str = "appuser",
    postgres_version: int = 15,
    os_user: str = "ec2-user",
) -> str:
    """Render the first-boot script for Amazon Linux 2023.

    Installs and starts PostgreSQL, then drops ``configure-postgres.sh`` into
    the login user's home. That script is run by hand after the first SSH
    login: it prompts for passwords, creates the application role and
    database, and opens the server to remote md5 connections.

    :param db_name: Application database created by the configure script
    :param db_user: Application role created by the configure script
    :param postgres_version: Major version of the postgresqlNN packages
    :param os_user: Login user that owns the configure script
    :return: Shell script suitable for ``run_instances(UserData=...)``
    """
    home = f"/home/{os_user}"
    return dedent(f"""\
        #!/bin/bash
        yum update -y
        yum install -y postgresql{postgres_version}-server postgresql{postgres_version}-contrib htop

        # Initialize PostgreSQL
        postgresql-setup --initdb

        # Start and enable PostgreSQL
        systemctl start postgresql
        systemctl enable postgresql

        touch {SETUP_LOG}
        echo "PostgreSQL installation completed at $(date)" >> {SETUP_LOG}

        cat > {home}/configure-postgres.sh << 'SETUP_SCRIPT'
        #!/bin/bash
        echo "PostgreSQL Configuration Script"
        echo "==============================="

        # Set the postgres superuser password
        sudo -u postgres psql -c "\\password postgres"

        # Create application user
        sudo -u postgres createuser --interactive --pwprompt {db_user}

        # Create application database
        sudo -u postgres createdb -O {db_user} {db_name}

        # Configure PostgreSQL for remote connections
        sudo sed -i "s/#listen_addresses = 'localhost'/listen_addresses = '*'/" /var/lib/pgsql/data/postgresql.conf

        # Update pg_hba.conf for authentication
        echo "host    all             all             0.0.0.0/0               md5" | sudo tee -a /var/lib/pgsql/data/pg_hba.conf

        sudo systemctl restart postgresql

        PUBLIC_IP=$(curl -s http://169.254.169.254/latest/meta-data/public-ipv4)
        echo "PostgreSQL configuration complete!"
        echo "Connection details:"
        echo "   Host: $PUBLIC_IP"
        echo "   Port: 5432"
        echo "   Database: {db_name}"
        echo "   Username: {db_user}"
        echo ""
        echo "To connect from your local machine:"
        echo "   psql -h $PUBLIC_IP -p 5432 -U {db_user} -d {db_name}"
        SETUP_SCRIPT

        chmod +x {home}/configure-postgres.sh
        chown {os_user}:{os_user} {home}/configure-postgres.sh

        echo "Setup script created at {home}/configure-postgres.sh" >> {SETUP_LOG}
        """)


def load_user_data(path: str | Path) -> str:
    """Read a caller-supplied user-data payload verbatim."""
    return Path(path).read_text()
