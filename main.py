#!/usr/bin/env python3
"""
FashionMind - CLI Virtual Try-On

Drives the style studio from the terminal against a running relay server:
- Weather lookup (city or coordinates) for context
- Outfit suggestion and virtual try-on rendering
- Optional 360° turntable video
- Interactive stylist chat

Usage:
    python main.py <photo.jpg> [--vision TEXT] [--category tops --category outerwear] ...

Example:
    python main.py me.jpg --season Winter --location "Oslo" --video
    python main.py me.jpg --vision "linen suit" --chat --ollama
"""

import argparse
import logging
import sys
from datetime import datetime

from config import client_api_base, load_environment
from models.schemas import CATEGORIES, GENDERS, SEASONS, SKIN_TONES
from services.errors import StylistError
from services.studio import StyleStudio
from services.stylist_client import build_client
from services.utils import image_file_to_data_uri, save_data_uri, validate_image_path


def print_banner():
    """Print a nice ASCII banner"""
    banner = """
╔═══════════════════════════════════════════════════════╗
║                                                       ║
║              👗 FASHIONMIND VIRTUAL TRY-ON 👔          ║
║                                                       ║
║         Outfit suggestions, try-on renders,           ║
║            turntable videos & stylist chat            ║
║                                                       ║
╚═══════════════════════════════════════════════════════╝
"""
    print(banner)


def build_parser():
    parser = argparse.ArgumentParser(description="FashionMind virtual try-on CLI")
    parser.add_argument('photo', help="Photo of the person to dress")
    parser.add_argument('--vision', default='', help="Free-text outfit idea (blank = let the stylist decide)")
    parser.add_argument('--category', action='append', choices=CATEGORIES, dest='categories',
                        help="Clothing category to change (repeatable, default: tops)")
    parser.add_argument('--gender', default='Woman', choices=GENDERS)
    parser.add_argument('--skin-tone', default='East Asian', choices=SKIN_TONES)
    parser.add_argument('--nationality', default='', help="Regional/cultural style")
    parser.add_argument('--season', default='Summer', choices=SEASONS)
    parser.add_argument('--location', help="City for weather context")
    parser.add_argument('--lat', type=float, help="Latitude for weather context")
    parser.add_argument('--lon', type=float, help="Longitude for weather context")
    parser.add_argument('--video', action='store_true', help="Also generate a 360° turntable video")
    parser.add_argument('--chat', action='store_true', help="Chat with the stylist afterwards")
    parser.add_argument('--ollama', action='store_true', help="Use the local model routes")
    parser.add_argument('--server', default=None, help="Relay base URL (default: $STYLIST_API_BASE)")
    parser.add_argument('--output', default='output', help="Directory for generated images")
    return parser


def print_progress(state, message):
    print(f"   ⏳ {message}")


def chat_loop(studio):
    """Interactive stylist chat until an empty line or 'quit'"""
    print(f"\n💬 Stylist: {studio.chat_history[0].text}")
    print("   (empty line or 'quit' to exit)")
    while True:
        try:
            text = input("\n🧑 You: ").strip()
        except EOFError:
            break
        if not text or text.lower() in ('quit', 'exit'):
            break
        reply = studio.send_message(text)
        print(f"\n💬 Stylist: {reply.text}")


def main(argv=None):
    """Main CLI orchestrator"""
    args = build_parser().parse_args(argv)
    print_banner()
    load_environment()

    client = build_client(args.server or client_api_base(), use_ollama=args.ollama)
    studio = StyleStudio(client, progress_callback=print_progress)

    try:
        # Step 1: Load photo
        print("\n📋 Step 1: Loading your photo...")
        validate_image_path(args.photo)
        studio.set_subject_image(image_file_to_data_uri(args.photo))
        print(f"   ✓ Loaded {args.photo}")

        session = studio.session
        session.vision = args.vision
        session.gender = args.gender
        session.skin_tone = args.skin_tone
        session.nationality = args.nationality
        studio.set_season(args.season)
        for category in args.categories or []:
            if category not in session.categories:
                studio.toggle_category(category)
        if args.categories and 'tops' not in args.categories:
            studio.toggle_category('tops')

        # Step 2: Weather context
        if args.location or (args.lat is not None and args.lon is not None):
            print("\n🌦  Step 2: Checking the weather...")
            if args.location:
                report = studio.fetch_weather(args.location)
            else:
                report = studio.detect_location(args.lat, args.lon)
            print(f"   {report.text}")
            if session.weather_source:
                print(f"   Source: {session.weather_source.title} ({session.weather_source.uri})")

        # Step 3: Try-on
        print(f"\n🎨 Step 3: Styling {', '.join(session.categories)} for {session.season}...")
        result = studio.try_on()

        print(f"\n👗 Look: {session.vision[:200]}")
        if session.stylist_advice:
            print(f"\n💡 Stylist advice: {session.stylist_advice}")

        if result.fallback:
            print(f"\n⚠️  {result.note or 'Image generation unavailable.'}")
            print(f"   Description: {result.description}")
        else:
            stem = f"tryon_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
            path = save_data_uri(session.generated_image, args.output, stem)
            print(f"\n📁 Try-on image saved to: {path}")

            item = studio.save_to_wardrobe()
            print(f"   👚 Saved to wardrobe ({len(studio.wardrobe)} item(s), id {item.id[:8]})")

            # Step 4: Turntable video
            if args.video:
                print("\n🎬 Step 4: Generating 360° turntable video (this can take a few minutes)...")
                uri = studio.generate_video()
                print(f"   ✓ Video ready: {uri}")

        if args.chat:
            chat_loop(studio)

        print()
        return 0

    except FileNotFoundError as e:
        print(f"\n❌ Error: {e}")
        print("   Please check that the photo path is correct.")
        return 1

    except ValueError as e:
        print(f"\n❌ Error: {e}")
        return 1

    except StylistError as e:
        print(f"\n❌ The atelier is currently busy: {e.message}")
        return 1


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    sys.exit(main())
