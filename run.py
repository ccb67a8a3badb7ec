from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from bibliotheca_import import create_app

app = create_app()

if __name__ == '__main__':
    import os

    port = int(os.environ.get('PORT', 5054))
    print(f"🚀 Starting importer on 0.0.0.0:{port}")
    app.run(host='0.0.0.0', port=port, threaded=True)
