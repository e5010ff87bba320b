from geofora.cli import main

main()
